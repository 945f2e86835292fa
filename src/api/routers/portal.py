import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status

from src.api.routers import portal_config
from src.api.routers.runtime_utils import normalize_backend_init_error
from src.core.portal import (
    InvalidAttemptThrottle,
    PersistenceVerifier,
    PortalApprovalService,
    PortalDecisionRequest,
    PortalDecisionResult,
    PortalIssuanceService,
    PortalIssueRequest,
    PortalIssueResponse,
    PortalRateLimitedError,
    PortalRepository,
    PortalServiceUnavailableError,
    PortalTokenCodec,
    PortalTokenValidator,
    PortalUnauthorizedError,
    PortalViewResponse,
)

router = APIRouter(tags=["Proposal Client Portal"])
logger = logging.getLogger(__name__)


@dataclass
class PortalRuntime:
    repository: PortalRepository
    issuance: PortalIssuanceService
    approval: PortalApprovalService
    verifier: PersistenceVerifier
    throttle: Optional[InvalidAttemptThrottle]

    def close(self) -> None:
        self.verifier.shutdown()


_RUNTIME: Optional[PortalRuntime] = None


def build_portal_runtime(*, repository: PortalRepository) -> PortalRuntime:
    codec = PortalTokenCodec(secret=portal_config.portal_token_secret())
    validator = PortalTokenValidator(codec=codec, store=repository)
    verifier = PersistenceVerifier(
        store=repository,
        timeout_seconds=portal_config.portal_verify_timeout_seconds(),
    )
    throttle = (
        InvalidAttemptThrottle(
            limit=portal_config.portal_invalid_attempt_limit(),
            window_seconds=portal_config.portal_invalid_attempt_window_seconds(),
        )
        if portal_config.portal_throttle_enabled()
        else None
    )
    return PortalRuntime(
        repository=repository,
        issuance=PortalIssuanceService(
            repository=repository,
            codec=codec,
            validator=validator,
            base_url=portal_config.portal_base_url(),
        ),
        approval=PortalApprovalService(
            repository=repository,
            validator=validator,
            verifier=verifier,
        ),
        verifier=verifier,
        throttle=throttle,
    )


def get_portal_runtime() -> PortalRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        try:
            repository = portal_config.build_repository()
        except RuntimeError as exc:
            raise PortalServiceUnavailableError(
                normalize_backend_init_error(
                    detail=str(exc),
                    required_detail="PORTAL_POSTGRES_DSN_REQUIRED",
                    fallback_detail="PORTAL_POSTGRES_CONNECTION_FAILED",
                )
            ) from exc
        _RUNTIME = build_portal_runtime(repository=repository)
    return _RUNTIME


def close_portal_runtime() -> None:
    global _RUNTIME
    if _RUNTIME is not None:
        _RUNTIME.close()
        _RUNTIME = None


def reset_portal_runtime_for_tests(runtime: Optional[PortalRuntime] = None) -> None:
    global _RUNTIME
    if _RUNTIME is not None and _RUNTIME is not runtime:
        _RUNTIME.close()
    _RUNTIME = runtime


def _client_key(request: Request) -> str:
    return request.client.host if request.client is not None else "unknown"


def _guard_throttle(runtime: PortalRuntime, key: str) -> None:
    if runtime.throttle is not None and runtime.throttle.is_blocked(key):
        logger.warning("portal.throttled", extra={"extra_fields": {"client": key}})
        raise PortalRateLimitedError("TOO_MANY_INVALID_ATTEMPTS")


def _note_unauthorized(runtime: PortalRuntime, key: str) -> None:
    if runtime.throttle is not None:
        runtime.throttle.record_failure(key)


@router.post(
    "/proposals/{proposal_id}/portal",
    response_model=PortalIssueResponse,
    status_code=status.HTTP_200_OK,
    summary="Issue Client Portal Link",
    description=(
        "Issues a signed, time-limited portal token for the proposal. Any earlier token "
        "for the same proposal stops resolving."
    ),
)
def issue_portal(
    proposal_id: Annotated[
        str,
        Path(description="Proposal identifier.", examples=["prop_001"]),
    ],
    runtime: Annotated[PortalRuntime, Depends(get_portal_runtime)],
    payload: Annotated[Optional[PortalIssueRequest], Body()] = None,
) -> PortalIssueResponse:
    return runtime.issuance.issue_portal(
        proposal_id=proposal_id,
        custom_expiry=payload.custom_expiry if payload is not None else None,
    )


@router.get(
    "/portal/{token}",
    response_model=PortalViewResponse,
    status_code=status.HTTP_200_OK,
    summary="View Client Portal",
    description="Validates the portal token, records the view, and returns proposal status.",
)
def view_portal(
    token: Annotated[str, Path(description="Portal bearer token.")],
    request: Request,
    runtime: Annotated[PortalRuntime, Depends(get_portal_runtime)],
) -> PortalViewResponse:
    key = _client_key(request)
    _guard_throttle(runtime, key)
    try:
        return runtime.issuance.view_portal(token=token)
    except PortalUnauthorizedError:
        _note_unauthorized(runtime, key)
        raise


@router.post(
    "/portal/{token}/approve",
    response_model=PortalDecisionResult,
    status_code=status.HTTP_200_OK,
    summary="Submit Client Decision",
    description=(
        "Records the client's decision against the proposal and re-reads the stored record "
        "before reporting success."
    ),
)
def approve_portal(
    token: Annotated[str, Path(description="Portal bearer token.")],
    payload: PortalDecisionRequest,
    request: Request,
    runtime: Annotated[PortalRuntime, Depends(get_portal_runtime)],
) -> PortalDecisionResult:
    key = _client_key(request)
    _guard_throttle(runtime, key)
    try:
        return runtime.approval.submit_decision(
            token=token,
            decision=payload.decision,
            comment=payload.comment,
            client_name=payload.client_name,
        )
    except PortalUnauthorizedError:
        _note_unauthorized(runtime, key)
        raise
