"""Normalise identity-provider user attributes into a provider-neutral profile.

``parse_provider_profile`` is called by the provider integration with the raw attribute
payload; its result feeds ``tokenward.services.login.complete_login``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class UnsupportedProvider(ValueError):
    pass


@dataclass(frozen=True)
class ProviderProfile:
    provider: str
    provider_subject_id: str
    email: str | None
    display_name: str

    @property
    def subject_id(self) -> str:
        """Stable, provider-qualified id, e.g. ``google:1234``."""
        return f"{self.provider}:{self.provider_subject_id}"


def _required(attributes: Mapping[str, Any], key: str, provider: str) -> str:
    value = attributes.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{provider} attributes missing {key!r}")
    return str(value)


def _google(attributes: Mapping[str, Any]) -> ProviderProfile:
    return ProviderProfile(
        provider="google",
        provider_subject_id=_required(attributes, "sub", "google"),
        email=attributes.get("email"),
        display_name=str(attributes.get("name") or ""),
    )


def _naver(attributes: Mapping[str, Any]) -> ProviderProfile:
    # Naver wraps the profile in a "response" object
    response = attributes.get("response")
    if not isinstance(response, Mapping):
        raise ValueError("naver attributes missing 'response'")
    return ProviderProfile(
        provider="naver",
        provider_subject_id=_required(response, "id", "naver"),
        email=response.get("email"),
        display_name=str(response.get("name") or ""),
    )


_PARSERS = {
    "google": _google,
    "naver": _naver,
}


def parse_provider_profile(provider: str, attributes: Mapping[str, Any]) -> ProviderProfile:
    parser = _PARSERS.get((provider or "").strip().lower())
    if parser is None:
        raise UnsupportedProvider(f"Unsupported identity provider: {provider!r}")
    return parser(attributes)
