import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from tokenward.api.cookies import clear_credential_cookies
from tokenward.api.v1 import auth
from tokenward.config import settings
from tokenward.core.errors import AuthError
from tokenward.core.metrics import REGISTRY
from tokenward.core.rate_limit import limiter
from tokenward.db.session import init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("tokenward").setLevel(logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_security_config()
    await init_db()
    yield


app = FastAPI(
    title="Tokenward",
    description="Stateless cookie-token authentication: issuance, rotation, logout",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    response = JSONResponse(status_code=401, content={"detail": exc.detail, "code": exc.code})
    if exc.clears_credentials:
        clear_credential_cookies(response)
    return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.include_router(auth.router, prefix="/api/v1")

metrics_app = make_asgi_app(registry=REGISTRY)
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
