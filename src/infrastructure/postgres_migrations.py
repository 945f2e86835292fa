from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

MIGRATIONS_ROOT = Path(__file__).with_name("postgres_migrations")

_CREATE_SCHEMA_MIGRATIONS = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version TEXT PRIMARY KEY,
        namespace TEXT NOT NULL,
        checksum TEXT NOT NULL,
        applied_at TEXT NOT NULL
    )
"""


@dataclass(frozen=True)
class PostgresMigration:
    namespace: str
    version: str
    sql: str
    checksum: str

    @property
    def stored_version(self) -> str:
        return f"{self.namespace}:{self.version}"


def load_postgres_migrations(
    *, namespace: str, root: Optional[Path] = None
) -> list[PostgresMigration]:
    namespace_path = (root or MIGRATIONS_ROOT) / namespace
    if not namespace_path.is_dir():
        raise RuntimeError(f"POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:{namespace}")
    migrations = []
    for sql_path in sorted(namespace_path.glob("*.sql")):
        sql = sql_path.read_text(encoding="utf-8")
        migrations.append(
            PostgresMigration(
                namespace=namespace,
                version=sql_path.stem.split("_", maxsplit=1)[0],
                sql=sql,
                checksum=hashlib.sha256(sql.encode("utf-8")).hexdigest(),
            )
        )
    return migrations


def apply_postgres_migrations(
    *, connection: Any, namespace: str, root: Optional[Path] = None
) -> list[str]:
    """Apply pending migrations for one namespace under a session advisory lock.

    Returns the versions applied by this call. An already-applied version whose file
    changed since it ran fails with POSTGRES_MIGRATION_CHECKSUM_MISMATCH.
    """
    migrations = load_postgres_migrations(namespace=namespace, root=root)
    lock_key = advisory_lock_key(f"migrations:{namespace}")
    connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
    try:
        applied = _apply_pending(connection=connection, namespace=namespace, migrations=migrations)
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))
    return applied


def advisory_lock_key(name: str) -> int:
    digest = hashlib.sha256(name.encode("utf-8")).digest()[:8]
    return int.from_bytes(digest, byteorder="big", signed=True)


def _apply_pending(
    *, connection: Any, namespace: str, migrations: list[PostgresMigration]
) -> list[str]:
    connection.execute(_CREATE_SCHEMA_MIGRATIONS)
    rows = connection.execute(
        """
        SELECT version, checksum
        FROM schema_migrations
        WHERE namespace = %s
        ORDER BY version ASC
        """,
        (namespace,),
    ).fetchall()
    recorded = {str(row["version"]): str(row["checksum"]) for row in rows}

    applied: list[str] = []
    for migration in migrations:
        checksum = recorded.get(migration.stored_version)
        if checksum is not None:
            if checksum != migration.checksum:
                raise RuntimeError(
                    f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{migration.version}"
                )
            continue
        for statement in migration.sql.split(";"):
            if statement.strip():
                connection.execute(statement.strip())
        connection.execute(
            """
            INSERT INTO schema_migrations (version, namespace, checksum, applied_at)
            VALUES (%s, %s, %s, %s)
            """,
            (
                migration.stored_version,
                namespace,
                migration.checksum,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        applied.append(migration.version)
    connection.commit()
    return applied
