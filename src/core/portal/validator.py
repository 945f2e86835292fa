import logging
from datetime import datetime, timezone
from typing import NoReturn, Optional

from src.core.portal.errors import PortalAccessDeniedError, PortalTokenDecodeError
from src.core.portal.models import ValidatedPortalAccess
from src.core.portal.repository import PortalTokenStore
from src.core.portal.tokens import PortalTokenCodec


class PortalTokenValidator:
    def __init__(
        self,
        *,
        codec: PortalTokenCodec,
        store: PortalTokenStore,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._codec = codec
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    def validate(self, token: str, *, now: Optional[datetime] = None) -> ValidatedPortalAccess:
        """Decode, look up and expiry-check a presented token.

        Every failure raises PortalAccessDeniedError with the same public message;
        the reason code is only written to the log.
        """
        try:
            payload = self._codec.decode(token)
        except PortalTokenDecodeError:
            self._deny("MALFORMED", proposal_id=None)

        record = self._store.get_token(token=token)
        if record is None or record.proposal_id != payload.proposal_id:
            self._deny("UNKNOWN", proposal_id=payload.proposal_id)

        current = now or datetime.now(timezone.utc)
        if current >= record.expires_at:
            self._deny("EXPIRED", proposal_id=payload.proposal_id)

        return ValidatedPortalAccess(
            proposal_id=record.proposal_id,
            client_name=record.client_name,
            client_email=record.client_email,
            expires_at=record.expires_at,
        )

    def validate_view(self, token: str, *, now: Optional[datetime] = None) -> ValidatedPortalAccess:
        current = now or datetime.now(timezone.utc)
        access = self.validate(token, now=current)
        try:
            self._store.record_view(token=token, viewed_at=current)
        except Exception:
            self._logger.warning(
                "portal.view_record_failed",
                exc_info=True,
                extra={"extra_fields": {"proposal_id": access.proposal_id}},
            )
        return access

    def _deny(self, reason: str, *, proposal_id: Optional[str]) -> NoReturn:
        self._logger.info(
            "portal.token_rejected",
            extra={"extra_fields": {"reason": reason, "proposal_id": proposal_id}},
        )
        raise PortalAccessDeniedError(reason)
