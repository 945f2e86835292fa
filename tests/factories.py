from src.core.portal.models import ProposalRecord

TEST_TOKEN_SECRET = "test-portal-secret"


def make_proposal(proposal_id: str = "P1", **overrides) -> ProposalRecord:
    fields = {
        "proposal_id": proposal_id,
        "name": "Smart Home Automation System",
        "total_amount": 12500.0,
        "status": "SENT",
        "is_existing_customer": False,
        "prospect_name": "Jane Doe",
        "prospect_email": "jane@example.com",
    }
    fields.update(overrides)
    return ProposalRecord(**fields)
