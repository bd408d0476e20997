"""SQLAlchemy Core table definitions for the registration ledger.

One ledger database lives in each ``conf`` directory: the run-wide ledger
at ``<root>/conf`` holds domain references, each domain's own ledger at
``<workspace>/conf`` holds its agents.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, MetaData, Table, Text

metadata = MetaData()

# Current state, one row per (kind, name).
entities = Table(
    "entities",
    metadata,
    Column("kind", Text, primary_key=True),
    Column("name", Text, primary_key=True),
    Column("data", Text, nullable=False),  # JSON object
    Column("created", Text, nullable=False),
    Column("modified", Text, nullable=False),
)

# Commit log; ids increase in commit order.
transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("committed", Text, nullable=False),
    Column("entry_count", Integer, nullable=False, default=0, server_default="0"),
)

transaction_entries = Table(
    "transaction_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transaction_id", Integer, ForeignKey("transactions.id"), nullable=False),
    Column("position", Integer, nullable=False),
    Column("kind", Text, nullable=False),
    Column("name", Text, nullable=False),
    Column("data", Text, nullable=False),  # JSON snapshot at commit time
)

Index("ix_entities_kind", entities.c.kind)
Index("ix_transaction_entries_txn", transaction_entries.c.transaction_id)

LEDGER_FILENAME = "ledger.db"
