import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from src.core.portal.models import VerificationOutcome
from src.core.portal.repository import ProposalRecordStore

DEFAULT_VERIFY_TIMEOUT_SECONDS = 5.0


class PersistenceVerifier:
    """Re-reads a proposal through the store's fresh read path after a write.

    A read that times out or errors is reported as MISMATCH, never as verified.
    """

    def __init__(
        self,
        *,
        store: ProposalRecordStore,
        timeout_seconds: float = DEFAULT_VERIFY_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
        max_workers: int = 4,
    ) -> None:
        self._store = store
        self._timeout_seconds = max(0.01, timeout_seconds)
        self._logger = logger or logging.getLogger(__name__)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="portal-verify"
        )

    def verify(self, *, proposal_id: str, expected_status: str) -> VerificationOutcome:
        future = self._executor.submit(self._store.read_proposal_fresh, proposal_id=proposal_id)
        try:
            proposal = future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError:
            self._logger.error(
                "portal.verification_timeout",
                extra={
                    "extra_fields": {
                        "proposal_id": proposal_id,
                        "expected": expected_status,
                        "timeout_seconds": self._timeout_seconds,
                    }
                },
            )
            return VerificationOutcome(
                status="MISMATCH", proposal_id=proposal_id, expected=expected_status
            )
        except Exception:
            self._logger.exception(
                "portal.verification_read_failed",
                extra={"extra_fields": {"proposal_id": proposal_id}},
            )
            return VerificationOutcome(
                status="MISMATCH", proposal_id=proposal_id, expected=expected_status
            )

        if proposal is None:
            self._logger.error(
                "portal.verification_not_found",
                extra={"extra_fields": {"proposal_id": proposal_id}},
            )
            return VerificationOutcome(
                status="NOT_FOUND", proposal_id=proposal_id, expected=expected_status
            )

        if proposal.client_status != expected_status:
            self._logger.error(
                "portal.verification_mismatch",
                extra={
                    "extra_fields": {
                        "proposal_id": proposal_id,
                        "expected": expected_status,
                        "actual": proposal.client_status,
                    }
                },
            )
            return VerificationOutcome(
                status="MISMATCH",
                proposal_id=proposal_id,
                expected=expected_status,
                actual=proposal.client_status,
            )

        return VerificationOutcome(
            status="VERIFIED",
            proposal_id=proposal_id,
            expected=expected_status,
            actual=proposal.client_status,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
