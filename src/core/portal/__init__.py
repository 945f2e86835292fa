from src.core.portal.errors import (
    PortalAccessDeniedError,
    PortalError,
    PortalInputError,
    PortalNotFoundError,
    PortalPersistenceError,
    PortalRateLimitedError,
    PortalServiceUnavailableError,
    PortalTokenDecodeError,
    PortalUnauthorizedError,
    PortalVerificationError,
)
from src.core.portal.models import (
    PortalDecisionRequest,
    PortalDecisionResult,
    PortalIssueRequest,
    PortalIssueResponse,
    PortalTokenRecord,
    PortalViewResponse,
    ProposalRecord,
)
from src.core.portal.repository import PortalRepository
from src.core.portal.service import PortalApprovalService, PortalIssuanceService
from src.core.portal.throttle import InvalidAttemptThrottle
from src.core.portal.tokens import PortalTokenCodec
from src.core.portal.validator import PortalTokenValidator
from src.core.portal.verification import PersistenceVerifier

__all__ = [
    "InvalidAttemptThrottle",
    "PersistenceVerifier",
    "PortalAccessDeniedError",
    "PortalApprovalService",
    "PortalDecisionRequest",
    "PortalDecisionResult",
    "PortalError",
    "PortalInputError",
    "PortalIssuanceService",
    "PortalIssueRequest",
    "PortalIssueResponse",
    "PortalNotFoundError",
    "PortalPersistenceError",
    "PortalRateLimitedError",
    "PortalRepository",
    "PortalServiceUnavailableError",
    "PortalTokenCodec",
    "PortalTokenDecodeError",
    "PortalTokenRecord",
    "PortalTokenValidator",
    "PortalUnauthorizedError",
    "PortalVerificationError",
    "PortalViewResponse",
    "ProposalRecord",
]
