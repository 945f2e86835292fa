from __future__ import annotations

import os

from src.api.routers.portal_config import (
    portal_postgres_dsn,
    portal_store_backend_name,
    portal_token_secret_configured,
)

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if portal_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_PORTAL_POSTGRES")
    if not portal_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_PORTAL_POSTGRES_DSN")
    if not portal_token_secret_configured():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_PORTAL_TOKEN_SECRET")
