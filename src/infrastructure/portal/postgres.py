from contextlib import closing, contextmanager
from datetime import datetime
from importlib.util import find_spec
from typing import Iterator, Optional

from src.core.portal.models import PortalTokenRecord, ProposalApprovalUpdate, ProposalRecord
from src.infrastructure.postgres_migrations import advisory_lock_key, apply_postgres_migrations

_PROPOSAL_COLUMNS = """
    proposal_id,
    name,
    total_amount,
    status,
    is_existing_customer,
    customer_first_name,
    customer_last_name,
    customer_email,
    prospect_name,
    prospect_email,
    client_status,
    client_feedback,
    approved_at,
    approved_by,
    updated_at
"""

_TOKEN_COLUMNS = """
    proposal_id,
    token,
    client_name,
    client_email,
    issued_at,
    expires_at,
    view_count,
    last_viewed_at
"""


DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0
DEFAULT_STATEMENT_TIMEOUT_SECONDS = 10.0


class PostgresPortalRepository:
    """Portal store on PostgreSQL.

    Every session carries statement and lock timeouts; advisory lock waits and writes fail
    once they elapse.
    """

    def __init__(
        self,
        *,
        dsn: str,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        statement_timeout_seconds: float = DEFAULT_STATEMENT_TIMEOUT_SECONDS,
    ) -> None:
        if not dsn:
            raise RuntimeError("PORTAL_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("PORTAL_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._connect_timeout = max(1, int(connect_timeout_seconds))
        timeout_ms = max(1, int(statement_timeout_seconds * 1000))
        self._session_options = f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"
        self._init_db()

    def save_proposal(self, proposal: ProposalRecord) -> None:
        query = f"""
            INSERT INTO portal_proposals ({_PROPOSAL_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (proposal_id) DO UPDATE SET
                name=excluded.name,
                total_amount=excluded.total_amount,
                status=excluded.status,
                is_existing_customer=excluded.is_existing_customer,
                customer_first_name=excluded.customer_first_name,
                customer_last_name=excluded.customer_last_name,
                customer_email=excluded.customer_email,
                prospect_name=excluded.prospect_name,
                prospect_email=excluded.prospect_email,
                client_status=excluded.client_status,
                client_feedback=excluded.client_feedback,
                approved_at=excluded.approved_at,
                approved_by=excluded.approved_by,
                updated_at=excluded.updated_at
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    proposal.proposal_id,
                    proposal.name,
                    proposal.total_amount,
                    proposal.status,
                    proposal.is_existing_customer,
                    proposal.customer_first_name,
                    proposal.customer_last_name,
                    proposal.customer_email,
                    proposal.prospect_name,
                    proposal.prospect_email,
                    proposal.client_status,
                    proposal.client_feedback,
                    _optional_iso(proposal.approved_at),
                    proposal.approved_by,
                    _optional_iso(proposal.updated_at),
                ),
            )
            connection.commit()

    def get_proposal(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM portal_proposals
            WHERE proposal_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_proposal(row)

    def read_proposal_fresh(self, *, proposal_id: str) -> Optional[ProposalRecord]:
        # New connection in autocommit mode so the read never joins an open transaction.
        query = f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM portal_proposals
            WHERE proposal_id = %s
        """
        with closing(self._connect(autocommit=True)) as connection:
            row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_proposal(row)

    def update_approval_state(self, update: ProposalApprovalUpdate) -> bool:
        query = """
            UPDATE portal_proposals SET
                client_status=%s,
                client_feedback=%s,
                approved_at=%s,
                approved_by=%s,
                updated_at=%s
            WHERE proposal_id = %s
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    update.client_status,
                    update.client_feedback,
                    _optional_iso(update.approved_at),
                    update.approved_by,
                    update.updated_at.isoformat(),
                    update.proposal_id,
                ),
            )
            connection.commit()
        return cursor.rowcount == 1

    @contextmanager
    def proposal_lock(self, *, proposal_id: str) -> Iterator[None]:
        lock_key = advisory_lock_key(f"portal:{proposal_id}")
        with closing(self._connect(autocommit=True)) as connection:
            connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
            try:
                yield
            finally:
                connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))

    def save_token(self, record: PortalTokenRecord) -> None:
        query = f"""
            INSERT INTO portal_tokens ({_TOKEN_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (proposal_id) DO UPDATE SET
                token=excluded.token,
                client_name=excluded.client_name,
                client_email=excluded.client_email,
                issued_at=excluded.issued_at,
                expires_at=excluded.expires_at,
                view_count=excluded.view_count,
                last_viewed_at=excluded.last_viewed_at
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    record.proposal_id,
                    record.token,
                    record.client_name,
                    record.client_email,
                    record.issued_at.isoformat(),
                    record.expires_at.isoformat(),
                    record.view_count,
                    _optional_iso(record.last_viewed_at),
                ),
            )
            connection.commit()

    def get_token(self, *, token: str) -> Optional[PortalTokenRecord]:
        query = f"""
            SELECT {_TOKEN_COLUMNS}
            FROM portal_tokens
            WHERE token = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (token,)).fetchone()
        return _to_token(row)

    def get_token_for_proposal(self, *, proposal_id: str) -> Optional[PortalTokenRecord]:
        query = f"""
            SELECT {_TOKEN_COLUMNS}
            FROM portal_tokens
            WHERE proposal_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (proposal_id,)).fetchone()
        return _to_token(row)

    def record_view(self, *, token: str, viewed_at: datetime) -> None:
        query = """
            UPDATE portal_tokens SET
                view_count=view_count + 1,
                last_viewed_at=%s
            WHERE token = %s
        """
        with closing(self._connect()) as connection:
            connection.execute(query, (viewed_at.isoformat(), token))
            connection.commit()

    def _connect(self, *, autocommit: bool = False):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(
            self._dsn,
            row_factory=dict_row,
            autocommit=autocommit,
            connect_timeout=self._connect_timeout,
            options=self._session_options,
        )

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="portal")


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _to_proposal(row) -> Optional[ProposalRecord]:
    if row is None:
        return None
    return ProposalRecord(
        proposal_id=row["proposal_id"],
        name=row["name"],
        total_amount=row["total_amount"],
        status=row["status"],
        is_existing_customer=bool(row["is_existing_customer"]),
        customer_first_name=row["customer_first_name"],
        customer_last_name=row["customer_last_name"],
        customer_email=row["customer_email"],
        prospect_name=row["prospect_name"],
        prospect_email=row["prospect_email"],
        client_status=row["client_status"],
        client_feedback=row["client_feedback"],
        approved_at=_optional_datetime(row["approved_at"]),
        approved_by=row["approved_by"],
        updated_at=_optional_datetime(row["updated_at"]),
    )


def _to_token(row) -> Optional[PortalTokenRecord]:
    if row is None:
        return None
    return PortalTokenRecord(
        proposal_id=row["proposal_id"],
        token=row["token"],
        client_name=row["client_name"],
        client_email=row["client_email"],
        issued_at=datetime.fromisoformat(row["issued_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
        view_count=int(row["view_count"]),
        last_viewed_at=_optional_datetime(row["last_viewed_at"]),
    )
