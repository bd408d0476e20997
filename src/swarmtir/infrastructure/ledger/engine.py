"""Database engine setup for ledger files (SQLite, WAL mode).

The runtime process opens the same files while the test runs, so WAL mode
keeps its reads from blocking the harness's commits.

SQLAlchemy Core (not ORM) is used because the harness only appends a
handful of rows per run — no benefit from session management.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from swarmtir.infrastructure.ledger.schema import LEDGER_FILENAME, metadata


def create_ledger_engine(db_path: Path) -> Engine:
    """Create a SQLite engine with WAL mode and foreign keys enabled."""
    engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_ledger_database(conf_dir: Path) -> Engine:
    """Initialize the ledger at ``{conf_dir}/ledger.db``.

    Creates *conf_dir* (and parents) and all tables. Idempotent — safe to
    call on an existing ledger.
    """
    conf_dir.mkdir(parents=True, exist_ok=True)
    engine = create_ledger_engine(conf_dir / LEDGER_FILENAME)
    metadata.create_all(engine)
    return engine
