import logging
from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Any, Optional

from src.core.portal.errors import (
    PortalAccessDeniedError,
    PortalInputError,
    PortalNotFoundError,
    PortalPersistenceError,
    PortalServiceUnavailableError,
    PortalUnauthorizedError,
    PortalVerificationError,
)
from src.core.portal.models import (
    CLIENT_DECISIONS,
    PortalDecisionResult,
    PortalIssueResponse,
    PortalProposalSummary,
    PortalTokenRecord,
    PortalViewResponse,
    ProposalApprovalUpdate,
    ProposalRecord,
)
from src.core.portal.repository import PortalRepository
from src.core.portal.tokens import PortalTokenCodec, build_portal_url, is_expiring_soon
from src.core.portal.validator import PortalTokenValidator
from src.core.portal.verification import PersistenceVerifier

DECISION_MESSAGES: dict[str, tuple[str, str]] = {
    "approved": (
        "Proposal approved successfully! Thank you for choosing us.",
        "Our project manager will contact you within 24 hours to schedule your consultation.",
    ),
    "changes-requested": (
        "Change request submitted successfully.",
        "We'll review your feedback and provide an updated proposal within 2-3 business days.",
    ),
    "rejected": (
        "Proposal declined. Thank you for your time.",
        "Feel free to contact us if you have any questions or if your needs change in the "
        "future.",
    ),
}


class PortalIssuanceService:
    def __init__(
        self,
        *,
        repository: PortalRepository,
        codec: PortalTokenCodec,
        validator: PortalTokenValidator,
        base_url: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._codec = codec
        self._validator = validator
        self._base_url = base_url
        self._logger = logger or logging.getLogger(__name__)

    def issue_portal(
        self,
        *,
        proposal_id: str,
        custom_expiry: Any,
        now: Optional[datetime] = None,
    ) -> PortalIssueResponse:
        try:
            proposal = self._repository.get_proposal(proposal_id=proposal_id)
        except Exception as exc:
            self._logger.exception(
                "portal.issue_lookup_failed",
                extra={"extra_fields": {"proposal_id": proposal_id}},
            )
            raise PortalServiceUnavailableError("PROPOSAL_STORE_UNAVAILABLE") from exc
        if proposal is None:
            raise PortalNotFoundError("PROPOSAL_NOT_FOUND")

        client_name, client_email = proposal.resolve_client_identity()
        issued = self._codec.issue(
            proposal_id=proposal.proposal_id,
            client_name=client_name,
            client_email=client_email,
            ttl=custom_expiry,
            now=now,
        )
        try:
            self._repository.save_token(
                PortalTokenRecord(
                    proposal_id=proposal.proposal_id,
                    token=issued.token,
                    client_name=client_name,
                    client_email=client_email,
                    issued_at=issued.issued_at,
                    expires_at=issued.expires_at,
                )
            )
        except Exception as exc:
            self._logger.exception(
                "portal.token_save_failed",
                extra={"extra_fields": {"proposal_id": proposal_id}},
            )
            raise PortalPersistenceError("PORTAL_TOKEN_SAVE_FAILED") from exc

        self._logger.info(
            "portal.issued",
            extra={
                "extra_fields": {
                    "proposal_id": proposal.proposal_id,
                    "expires_at": issued.expires_at.isoformat(),
                }
            },
        )
        return PortalIssueResponse(
            portal_url=build_portal_url(base_url=self._base_url, token=issued.token),
            token=issued.token,
            expires_at=issued.expires_at,
            proposal=_to_summary(proposal, client_name=client_name, client_email=client_email),
        )

    def view_portal(self, *, token: str, now: Optional[datetime] = None) -> PortalViewResponse:
        current = now or _utc_now()
        try:
            access = self._validator.validate_view(token, now=current)
        except PortalAccessDeniedError as exc:
            raise PortalUnauthorizedError(str(exc)) from exc

        proposal = self._repository.get_proposal(proposal_id=access.proposal_id)
        if proposal is None:
            raise PortalNotFoundError("PROPOSAL_NOT_FOUND")
        return PortalViewResponse(
            proposal=_to_summary(
                proposal, client_name=access.client_name, client_email=access.client_email
            ),
            client_feedback=proposal.client_feedback,
            approved_at=proposal.approved_at,
            approved_by=proposal.approved_by,
            expires_at=access.expires_at,
            expiring_soon=is_expiring_soon(access.expires_at, now=current),
        )


class PortalApprovalService:
    def __init__(
        self,
        *,
        repository: PortalRepository,
        validator: PortalTokenValidator,
        verifier: PersistenceVerifier,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._validator = validator
        self._verifier = verifier
        self._logger = logger or logging.getLogger(__name__)

    def submit_decision(
        self,
        *,
        token: str,
        decision: Any,
        comment: Optional[str],
        client_name: Optional[str],
        now: Optional[datetime] = None,
    ) -> PortalDecisionResult:
        if decision not in CLIENT_DECISIONS:
            raise PortalInputError("INVALID_DECISION")

        try:
            access = self._validator.validate(token, now=now)
        except PortalAccessDeniedError as exc:
            raise PortalUnauthorizedError(str(exc)) from exc

        proposal_id = access.proposal_id
        with ExitStack() as stack:
            self._acquire_lock(stack, proposal_id)
            if self._repository.get_proposal(proposal_id=proposal_id) is None:
                raise PortalNotFoundError("PROPOSAL_NOT_FOUND")

            updated_at = now or _utc_now()
            approved = decision == "approved"
            update = ProposalApprovalUpdate(
                proposal_id=proposal_id,
                client_status=decision,
                client_feedback=comment or None,
                approved_at=updated_at if approved else None,
                approved_by=(client_name or access.client_name) if approved else None,
                updated_at=updated_at,
            )
            self._write(update)

            outcome = self._verifier.verify(proposal_id=proposal_id, expected_status=decision)
            if not outcome.verified:
                message = (
                    "PROPOSAL_NOT_FOUND_ON_VERIFICATION"
                    if outcome.status == "NOT_FOUND"
                    else "VERIFICATION_MISMATCH"
                )
                raise PortalVerificationError(
                    message,
                    proposal_id=proposal_id,
                    expected=outcome.expected,
                    actual=outcome.actual,
                )

        message, next_steps = DECISION_MESSAGES[decision]
        return PortalDecisionResult(
            message=message,
            next_steps=next_steps,
            proposal_id=proposal_id,
            decision=decision,
            timestamp=updated_at,
            client_feedback=update.client_feedback,
        )

    def _acquire_lock(self, stack: ExitStack, proposal_id: str) -> None:
        try:
            stack.enter_context(self._repository.proposal_lock(proposal_id=proposal_id))
        except Exception as exc:
            self._logger.exception(
                "portal.decision_lock_failed",
                extra={"extra_fields": {"proposal_id": proposal_id}},
            )
            raise PortalPersistenceError("PROPOSAL_LOCK_UNAVAILABLE") from exc

    def _write(self, update: ProposalApprovalUpdate) -> None:
        try:
            found = self._repository.update_approval_state(update)
        except Exception as exc:
            self._logger.exception(
                "portal.decision_write_failed",
                extra={
                    "extra_fields": {
                        "proposal_id": update.proposal_id,
                        "decision": update.client_status,
                    }
                },
            )
            raise PortalPersistenceError("DECISION_WRITE_FAILED") from exc
        if not found:
            self._logger.error(
                "portal.decision_write_missed",
                extra={"extra_fields": {"proposal_id": update.proposal_id}},
            )
            raise PortalPersistenceError("DECISION_WRITE_FAILED")


def _to_summary(
    proposal: ProposalRecord, *, client_name: str, client_email: str
) -> PortalProposalSummary:
    return PortalProposalSummary(
        id=proposal.proposal_id,
        name=proposal.name,
        client_name=client_name,
        client_email=client_email,
        total_amount=proposal.total_amount,
        status=proposal.status,
        client_status=proposal.client_status,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
