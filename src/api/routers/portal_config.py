import os
import warnings
from typing import cast

from src.api.routers.runtime_utils import env_flag, env_float, env_int
from src.core.portal.repository import PortalRepository
from src.infrastructure.portal import InMemoryPortalRepository, PostgresPortalRepository

DEFAULT_PORTAL_BASE_URL = "http://localhost:3002"
LOCAL_DEV_TOKEN_SECRET = "local-dev-portal-secret"


def portal_store_backend_name() -> str:
    backend = os.getenv("PORTAL_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    if backend != "IN_MEMORY":
        warnings.warn(
            f"PORTAL_STORE_BACKEND={backend!r} is not recognized; using IN_MEMORY.",
            RuntimeWarning,
            stacklevel=2,
        )
    return "IN_MEMORY"


def portal_postgres_dsn() -> str:
    return os.getenv("PORTAL_POSTGRES_DSN", "").strip()


def portal_token_secret_configured() -> bool:
    return bool(os.getenv("PORTAL_TOKEN_SECRET", "").strip())


def portal_token_secret() -> str:
    return os.getenv("PORTAL_TOKEN_SECRET", "").strip() or LOCAL_DEV_TOKEN_SECRET


def portal_base_url() -> str:
    return os.getenv("PORTAL_BASE_URL", "").strip() or DEFAULT_PORTAL_BASE_URL


def portal_verify_timeout_seconds() -> float:
    return env_float("PORTAL_VERIFY_TIMEOUT_SECONDS", 5.0)


def portal_postgres_connect_timeout_seconds() -> float:
    return env_float("PORTAL_POSTGRES_CONNECT_TIMEOUT_SECONDS", 5.0)


def portal_postgres_statement_timeout_seconds() -> float:
    return env_float("PORTAL_POSTGRES_STATEMENT_TIMEOUT_SECONDS", 10.0)


def portal_throttle_enabled() -> bool:
    return env_flag("PORTAL_THROTTLE_ENABLED", True)


def portal_invalid_attempt_limit() -> int:
    return env_int("PORTAL_INVALID_ATTEMPT_LIMIT", 10)


def portal_invalid_attempt_window_seconds() -> float:
    return env_float("PORTAL_INVALID_ATTEMPT_WINDOW_SECONDS", 300.0)


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> PortalRepository:
    if portal_store_backend_name() == "POSTGRES":
        dsn = portal_postgres_dsn()
        if not dsn:
            raise RuntimeError("PORTAL_POSTGRES_DSN_REQUIRED")
        try:
            repository = PostgresPortalRepository(
                dsn=dsn,
                connect_timeout_seconds=portal_postgres_connect_timeout_seconds(),
                statement_timeout_seconds=portal_postgres_statement_timeout_seconds(),
            )
            return cast(PortalRepository, repository)
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("PORTAL_POSTGRES_CONNECTION_FAILED") from exc
    return cast(PortalRepository, InMemoryPortalRepository())
