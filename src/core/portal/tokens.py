import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError

from src.core.common.canonical import canonical_json
from src.core.portal.errors import PortalTokenDecodeError
from src.core.portal.models import IssuedPortalToken, PortalTokenPayload

logger = logging.getLogger(__name__)

PORTAL_EXPIRY_OPTIONS: dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "14d": timedelta(days=14),
    "30d": timedelta(days=30),
    "60d": timedelta(days=60),
    "90d": timedelta(days=90),
}
DEFAULT_PORTAL_EXPIRY = "30d"
EXPIRING_SOON_WINDOW = timedelta(days=7)
NONCE_BYTES = 16


def resolve_portal_ttl(expiry: Any) -> timedelta:
    """Map a requested expiry label to a lifetime; unknown labels get the default."""
    if isinstance(expiry, str) and expiry in PORTAL_EXPIRY_OPTIONS:
        return PORTAL_EXPIRY_OPTIONS[expiry]
    if expiry is not None:
        logger.debug("Unrecognized portal expiry %r, using %s", expiry, DEFAULT_PORTAL_EXPIRY)
    return PORTAL_EXPIRY_OPTIONS[DEFAULT_PORTAL_EXPIRY]


def is_expiring_soon(
    expires_at: datetime,
    *,
    now: Optional[datetime] = None,
    window: timedelta = EXPIRING_SOON_WINDOW,
) -> bool:
    return expires_at < (now or _utc_now()) + window


class PortalTokenCodec:
    """Signed portal tokens.

    A token is ``<payload>.<signature>`` where both parts are unpadded base64url,
    the payload is canonical JSON and the signature is HMAC-SHA256 over the encoded
    payload. Each payload carries a random nonce, so two tokens for the same
    proposal and client never collide.
    """

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("PORTAL_TOKEN_SECRET_REQUIRED")
        self._secret = secret.encode("utf-8")

    def issue(
        self,
        *,
        proposal_id: str,
        client_name: str,
        client_email: str,
        ttl: Any = None,
        now: Optional[datetime] = None,
    ) -> IssuedPortalToken:
        issued_at = now or _utc_now()
        payload = PortalTokenPayload(
            proposal_id=proposal_id,
            client_name=client_name,
            client_email=client_email,
            issued_at=issued_at,
            expires_at=issued_at + resolve_portal_ttl(ttl),
            nonce=secrets.token_urlsafe(NONCE_BYTES),
        )
        encoded = _b64encode(canonical_json(payload.model_dump(mode="json")).encode("utf-8"))
        token = f"{encoded}.{self._sign(encoded)}"
        return IssuedPortalToken(
            token=token,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            payload=payload,
        )

    def decode(self, token: str) -> PortalTokenPayload:
        if not isinstance(token, str) or token.count(".") != 1:
            raise PortalTokenDecodeError()
        encoded, signature = token.split(".")
        if not encoded or not signature:
            raise PortalTokenDecodeError()
        try:
            signed = hmac.compare_digest(
                signature.encode("ascii"), self._sign(encoded).encode("ascii")
            )
            if not signed:
                raise PortalTokenDecodeError()
            raw = json.loads(_b64decode(encoded).decode("utf-8"))
            return PortalTokenPayload.model_validate(raw)
        except (binascii.Error, UnicodeError, ValueError, ValidationError) as exc:
            raise PortalTokenDecodeError() from exc

    def _sign(self, encoded: str) -> str:
        digest = hmac.new(self._secret, encoded.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)


def build_portal_url(*, base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/portal/{token}"


def _b64encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("ascii"))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
