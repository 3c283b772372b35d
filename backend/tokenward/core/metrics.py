from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter

REGISTRY = CollectorRegistry()

# Request authenticator outcomes: authenticated | reissued | rejected
auth_outcomes = Counter(
    "tokenward_auth_outcomes_total",
    "Per-request authentication outcomes",
    labelnames=("outcome",),
    registry=REGISTRY,
)
auth_rejections = Counter(
    "tokenward_auth_rejections_total",
    "Authentication rejections by failure code",
    labelnames=("code",),
    registry=REGISTRY,
)
logouts = Counter("tokenward_logouts_total", "Successful logouts", registry=REGISTRY)
