"""
Sequential SQL migrations.

Files named ``NNN_description.sql`` in the migrations directory are applied
in order, each inside one transaction, and recorded in ``schema_migrations``.
Every statement runs in its own savepoint so that objects which already
exist (re-runs against a partially migrated database) are skipped without
aborting the file. Any other failure rolls the whole file back.
"""
import os
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from .config import settings
from .db import engine as default_engine
from .models.models import SchemaMigration


log = structlog.get_logger(__name__)

MIGRATION_FILE = re.compile(r"^(\d{3}_[A-Za-z0-9_\-]+)\.sql$")
ALREADY_EXISTS_MARKERS = ("already exists", "duplicate column")


class MigrationError(Exception):
    def __init__(self, version: str, statement: str, cause: Exception):
        super().__init__(f"Migration {version} failed: {cause}")
        self.version = version
        self.statement = statement
        self.cause = cause


def split_statements(sql: str) -> List[str]:
    """Split a script on ``;`` after dropping ``--`` comment lines."""
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]


def discover(directory: str) -> List[Tuple[str, str]]:
    """(version, path) pairs sorted by version."""
    if not os.path.isdir(directory):
        return []
    found = []
    for name in os.listdir(directory):
        m = MIGRATION_FILE.match(name)
        if m:
            found.append((m.group(1), os.path.join(directory, name)))
    return sorted(found)


def _already_exists(exc: DBAPIError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in ALREADY_EXISTS_MARKERS)


def applied_versions(engine: Engine) -> List[str]:
    table = SchemaMigration.__table__
    with engine.begin() as conn:
        table.create(conn, checkfirst=True)
        return list(conn.execute(select(table.c.version).order_by(table.c.version)).scalars())


def apply_file(engine: Engine, version: str, path: str) -> int:
    """Apply one migration file; returns the number of statements executed."""
    with open(path, encoding="utf-8") as fh:
        statements = split_statements(fh.read())
    executed = 0
    with engine.connect() as conn:
        with conn.begin():
            for statement in statements:
                try:
                    with conn.begin_nested():
                        conn.exec_driver_sql(statement)
                    executed += 1
                except DBAPIError as exc:
                    if _already_exists(exc):
                        log.info("migration_statement_skipped", version=version, statement=statement.splitlines()[0][:80])
                        continue
                    log.error("migration_failed", version=version, statement=statement.splitlines()[0][:80], error=str(exc.orig))
                    raise MigrationError(version, statement, exc) from exc
            conn.execute(
                insert(SchemaMigration.__table__).values(version=version, applied_at=datetime.now(timezone.utc))
            )
    log.info("migration_applied", version=version, statements=executed)
    return executed


def apply_migrations(engine: Optional[Engine] = None, directory: Optional[str] = None) -> List[str]:
    """Apply every pending migration; returns the versions applied by this call."""
    engine = engine or default_engine
    directory = directory or settings.migrations_dir
    done = set(applied_versions(engine))
    applied = []
    for version, path in discover(directory):
        if version in done:
            log.debug("migration_already_applied", version=version)
            continue
        apply_file(engine, version, path)
        applied.append(version)
    return applied
