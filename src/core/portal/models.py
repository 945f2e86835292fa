from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ClientStatus = Literal["pending", "approved", "changes-requested", "rejected"]
ClientDecision = Literal["approved", "changes-requested", "rejected"]
PortalExpiry = Literal["7d", "14d", "30d", "60d", "90d"]
VerificationStatus = Literal["VERIFIED", "MISMATCH", "NOT_FOUND"]

CLIENT_DECISIONS: tuple[str, ...] = ("approved", "changes-requested", "rejected")
DEFAULT_CLIENT_NAME = "Valued Client"


class ProposalRecord(BaseModel):
    proposal_id: str = Field(description="Internal proposal identifier.", examples=["prop_001"])
    name: str = Field(description="Proposal display name.", examples=["Smart Home Package"])
    total_amount: Optional[float] = Field(
        default=None, description="Proposal total amount.", examples=[12500.0]
    )
    status: Optional[str] = Field(
        default=None, description="Internal proposal status.", examples=["SENT"]
    )
    is_existing_customer: bool = Field(
        default=False, description="Whether the proposal targets a stored customer."
    )
    customer_first_name: Optional[str] = Field(default=None, examples=["Jane"])
    customer_last_name: Optional[str] = Field(default=None, examples=["Doe"])
    customer_email: Optional[str] = Field(default=None, examples=["jane@example.com"])
    prospect_name: Optional[str] = Field(default=None, examples=["Jane Doe"])
    prospect_email: Optional[str] = Field(default=None, examples=["jane@example.com"])
    client_status: ClientStatus = Field(
        default="pending", description="Client-facing approval status.", examples=["pending"]
    )
    client_feedback: Optional[str] = Field(
        default=None, description="Free text captured with the client decision."
    )
    approved_at: Optional[datetime] = Field(
        default=None, description="Set only while client_status is approved."
    )
    approved_by: Optional[str] = Field(
        default=None, description="Set only while client_status is approved."
    )
    updated_at: Optional[datetime] = Field(
        default=None, description="Timestamp of the last mutation."
    )

    def resolve_client_identity(self) -> tuple[str, str]:
        if self.is_existing_customer and (self.customer_first_name or self.customer_last_name):
            name = f"{self.customer_first_name or ''} {self.customer_last_name or ''}".strip()
            return name, self.customer_email or ""
        return self.prospect_name or DEFAULT_CLIENT_NAME, self.prospect_email or ""


class ProposalApprovalUpdate(BaseModel):
    proposal_id: str
    client_status: ClientDecision
    client_feedback: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    updated_at: datetime


class PortalTokenRecord(BaseModel):
    proposal_id: str = Field(description="Proposal owning the token.", examples=["prop_001"])
    token: str = Field(description="Opaque portal bearer token.")
    client_name: str = Field(description="Client display name at issuance.", examples=["Jane"])
    client_email: str = Field(description="Client email at issuance.", examples=["j@x.com"])
    issued_at: datetime
    expires_at: datetime
    view_count: int = Field(default=0, ge=0)
    last_viewed_at: Optional[datetime] = None


class PortalTokenPayload(BaseModel):
    proposal_id: str
    client_name: str
    client_email: str
    issued_at: datetime
    expires_at: datetime
    nonce: str


class IssuedPortalToken(BaseModel):
    token: str
    issued_at: datetime
    expires_at: datetime
    payload: PortalTokenPayload


class ValidatedPortalAccess(BaseModel):
    proposal_id: str
    client_name: str
    client_email: str
    expires_at: datetime


class VerificationOutcome(BaseModel):
    status: VerificationStatus
    proposal_id: str
    expected: str
    actual: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.status == "VERIFIED"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PortalIssueRequest(_CamelModel):
    custom_expiry: Any = Field(
        default=None,
        alias="customExpiry",
        description="Requested portal lifetime. Unknown values fall back to 30d.",
        examples=["30d"],
    )


class PortalProposalSummary(_CamelModel):
    id: str = Field(examples=["prop_001"])
    name: str = Field(examples=["Smart Home Package"])
    client_name: str = Field(alias="clientName", examples=["Jane Doe"])
    client_email: str = Field(alias="clientEmail", examples=["jane@example.com"])
    total_amount: Optional[float] = Field(default=None, alias="totalAmount")
    status: Optional[str] = None
    client_status: Optional[ClientStatus] = Field(default=None, alias="clientStatus")


class PortalIssueResponse(_CamelModel):
    portal_url: str = Field(alias="portalUrl", examples=["http://localhost:3002/portal/abc"])
    token: str
    expires_at: datetime = Field(alias="expiresAt")
    proposal: PortalProposalSummary


class PortalViewResponse(_CamelModel):
    proposal: PortalProposalSummary
    client_feedback: Optional[str] = Field(default=None, alias="clientFeedback")
    approved_at: Optional[datetime] = Field(default=None, alias="approvedAt")
    approved_by: Optional[str] = Field(default=None, alias="approvedBy")
    expires_at: datetime = Field(alias="expiresAt")
    expiring_soon: bool = Field(alias="expiringSoon")


class PortalDecisionRequest(_CamelModel):
    decision: Any = Field(
        default=None,
        description="One of approved, changes-requested, rejected.",
        examples=["approved"],
    )
    comment: Optional[str] = Field(default=None, examples=["Looks great"])
    client_name: Optional[str] = Field(default=None, alias="clientName", examples=["Jane Doe"])


class PortalDecisionResult(_CamelModel):
    success: bool = True
    message: str
    next_steps: str = Field(alias="nextSteps")
    proposal_id: str = Field(alias="proposalId")
    decision: ClientDecision
    timestamp: datetime
    client_feedback: Optional[str] = Field(default=None, alias="clientFeedback")
    verified: bool = True
