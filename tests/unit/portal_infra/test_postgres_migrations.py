import hashlib

import pytest

from src.infrastructure.postgres_migrations import (
    advisory_lock_key,
    apply_postgres_migrations,
    load_postgres_migrations,
)


class _Result:
    def __init__(self, rows=None):
        self._rows = rows or []

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self, recorded=None):
        self.recorded = recorded or []
        self.statements: list[str] = []
        self.commits = 0
        self.rollbacks = 0

    def execute(self, query, params=None):
        self.statements.append(" ".join(query.split()))
        if "FROM schema_migrations" in query:
            return _Result(self.recorded)
        return _Result()

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _write_migrations(tmp_path):
    namespace = tmp_path / "portal"
    namespace.mkdir()
    (namespace / "0001_tables.sql").write_text(
        "CREATE TABLE a (id TEXT);\nCREATE TABLE b (id TEXT);\n", encoding="utf-8"
    )
    (namespace / "0002_index.sql").write_text("CREATE INDEX a_idx ON a (id);", encoding="utf-8")
    return tmp_path


def test_packaged_portal_migrations_load_in_order():
    migrations = load_postgres_migrations(namespace="portal")

    assert [migration.version for migration in migrations][0] == "0001"
    assert "portal_tokens" in migrations[0].sql


def test_unknown_namespace_is_rejected(tmp_path):
    with pytest.raises(RuntimeError, match="POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:nope"):
        load_postgres_migrations(namespace="nope", root=tmp_path)


def test_pending_migrations_apply_under_lock_and_commit_once(tmp_path):
    root = _write_migrations(tmp_path)
    connection = _FakeConnection()

    applied = apply_postgres_migrations(connection=connection, namespace="portal", root=root)

    assert applied == ["0001", "0002"]
    assert connection.statements[0].startswith("SELECT pg_advisory_lock")
    assert connection.statements[-1].startswith("SELECT pg_advisory_unlock")
    assert "CREATE TABLE a (id TEXT)" in connection.statements
    assert "CREATE TABLE b (id TEXT)" in connection.statements
    assert connection.commits == 1


def test_already_applied_migrations_are_skipped(tmp_path):
    root = _write_migrations(tmp_path)
    sql = (root / "portal" / "0001_tables.sql").read_text(encoding="utf-8")
    connection = _FakeConnection(
        recorded=[
            {
                "version": "portal:0001",
                "checksum": hashlib.sha256(sql.encode("utf-8")).hexdigest(),
            }
        ]
    )

    applied = apply_postgres_migrations(connection=connection, namespace="portal", root=root)

    assert applied == ["0002"]
    assert "CREATE TABLE a (id TEXT)" not in connection.statements


def test_changed_migration_fails_with_checksum_mismatch(tmp_path):
    root = _write_migrations(tmp_path)
    connection = _FakeConnection(recorded=[{"version": "portal:0001", "checksum": "stale"}])

    with pytest.raises(RuntimeError, match="POSTGRES_MIGRATION_CHECKSUM_MISMATCH:portal:0001"):
        apply_postgres_migrations(connection=connection, namespace="portal", root=root)

    assert connection.rollbacks == 1
    assert connection.statements[-1].startswith("SELECT pg_advisory_unlock")


def test_advisory_lock_key_is_stable_signed_bigint():
    key = advisory_lock_key("portal:P1")

    assert key == advisory_lock_key("portal:P1")
    assert key != advisory_lock_key("portal:P2")
    assert -(2**63) <= key < 2**63
