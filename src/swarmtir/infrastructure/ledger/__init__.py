"""SQLite registration ledger via SQLAlchemy Core."""

from swarmtir.infrastructure.ledger.engine import create_ledger_engine, init_ledger_database
from swarmtir.infrastructure.ledger.ledger import (
    CommittedEntry,
    Entity,
    Ledger,
    LedgerTransaction,
    SqlLedger,
    open_ledger,
)
from swarmtir.infrastructure.ledger.schema import (
    LEDGER_FILENAME,
    entities,
    metadata,
    transaction_entries,
    transactions,
)

__all__ = [
    "LEDGER_FILENAME",
    "CommittedEntry",
    "Entity",
    "Ledger",
    "LedgerTransaction",
    "SqlLedger",
    "create_ledger_engine",
    "entities",
    "init_ledger_database",
    "metadata",
    "open_ledger",
    "transaction_entries",
    "transactions",
]
