from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Iterator, Optional

from src.core.portal.models import PortalTokenRecord, ProposalApprovalUpdate, ProposalRecord
from src.core.portal.repository import PortalRepository


@dataclass
class _KeyedLock:
    lock: Lock = field(default_factory=Lock)
    users: int = 0


class InMemoryPortalRepository(PortalRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._proposals: dict[str, ProposalRecord] = {}
        self._tokens_by_proposal: dict[str, PortalTokenRecord] = {}
        self._proposal_by_token: dict[str, str] = {}
        self._proposal_locks: dict[str, _KeyedLock] = {}

    def save_proposal(self, proposal: ProposalRecord) -> None:
        with self._lock:
            self._proposals[proposal.proposal_id] = deepcopy(proposal)

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            return deepcopy(proposal) if proposal is not None else None

    def read_proposal_fresh(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        return self.get_proposal(proposal_id=proposal_id)

    def update_approval_state(self, update: ProposalApprovalUpdate) -> bool:
        with self._lock:
            proposal = self._proposals.get(update.proposal_id)
            if proposal is None:
                return False
            self._proposals[update.proposal_id] = proposal.model_copy(
                update={
                    "client_status": update.client_status,
                    "client_feedback": update.client_feedback,
                    "approved_at": update.approved_at,
                    "approved_by": update.approved_by,
                    "updated_at": update.updated_at,
                }
            )
            return True

    @contextmanager
    def proposal_lock(self, *, proposal_id: str) -> Iterator[None]:
        # Entries live only while some caller holds or waits on the lock.
        with self._lock:
            entry = self._proposal_locks.setdefault(proposal_id, _KeyedLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._proposal_locks[proposal_id]

    def save_token(self, record: PortalTokenRecord) -> None:
        with self._lock:
            previous = self._tokens_by_proposal.get(record.proposal_id)
            if previous is not None:
                self._proposal_by_token.pop(previous.token, None)
            self._tokens_by_proposal[record.proposal_id] = deepcopy(record)
            self._proposal_by_token[record.token] = record.proposal_id

    def get_token(self, *, token: str) -> Optional[PortalTokenRecord]:
        with self._lock:
            proposal_id = self._proposal_by_token.get(token)
            if proposal_id is None:
                return None
            record = self._tokens_by_proposal.get(proposal_id)
            return deepcopy(record) if record is not None else None

    def get_token_for_proposal(self, *, proposal_id: str) -> Optional[PortalTokenRecord]:
        with self._lock:
            record = self._tokens_by_proposal.get(proposal_id)
            return deepcopy(record) if record is not None else None

    def record_view(self, *, token: str, viewed_at: datetime) -> None:
        with self._lock:
            proposal_id = self._proposal_by_token.get(token)
            if proposal_id is None:
                return
            record = self._tokens_by_proposal[proposal_id]
            record.view_count += 1
            record.last_viewed_at = viewed_at
