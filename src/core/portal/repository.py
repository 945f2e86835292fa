from contextlib import AbstractContextManager
from datetime import datetime
from typing import Optional, Protocol

from src.core.portal.models import PortalTokenRecord, ProposalApprovalUpdate, ProposalRecord


class PortalTokenStore(Protocol):
    def save_token(self, record: PortalTokenRecord) -> None: ...

    def get_token(self, *, token: str) -> Optional[PortalTokenRecord]: ...

    def get_token_for_proposal(self, *, proposal_id: str) -> Optional[PortalTokenRecord]: ...

    def record_view(self, *, token: str, viewed_at: datetime) -> None: ...


class ProposalRecordStore(Protocol):
    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]: ...

    def read_proposal_fresh(self, *, proposal_id: str) -> Optional[ProposalRecord]: ...

    def update_approval_state(self, update: ProposalApprovalUpdate) -> bool: ...

    def proposal_lock(self, *, proposal_id: str) -> AbstractContextManager[None]: ...


class PortalRepository(PortalTokenStore, ProposalRecordStore, Protocol):
    def save_proposal(self, proposal: ProposalRecord) -> None: ...
