from typing import Optional


class PortalError(Exception):
    pass


class PortalInputError(PortalError):
    pass


class PortalUnauthorizedError(PortalError):
    pass


class PortalNotFoundError(PortalError):
    pass


class PortalRateLimitedError(PortalError):
    pass


class PortalPersistenceError(PortalError):
    pass


class PortalServiceUnavailableError(PortalError):
    pass


class PortalVerificationError(PortalError):
    def __init__(
        self,
        message: str,
        *,
        proposal_id: str,
        expected: str,
        actual: Optional[str],
    ) -> None:
        super().__init__(message)
        self.proposal_id = proposal_id
        self.expected = expected
        self.actual = actual


class PortalTokenDecodeError(PortalError):
    def __init__(self, reason: str = "MALFORMED") -> None:
        super().__init__(f"PORTAL_TOKEN_{reason}")
        self.reason = reason


class PortalAccessDeniedError(PortalError):
    """Token failed validation; `reason` is for server-side logs only."""

    PUBLIC_MESSAGE = "Invalid or expired token"

    def __init__(self, reason: str) -> None:
        super().__init__(self.PUBLIC_MESSAGE)
        self.reason = reason
