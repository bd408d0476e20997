"""Ledger — transactional registry of domain and agent entities.

The provisioner receives a :class:`Ledger` instead of reaching for a
process-wide handle, so it can run against :class:`SqlLedger` in a real
run and an in-memory fake in unit tests.

Usage::

    txn = ledger.begin_transaction()
    agent = txn.lookup("Agent", "echo")
    txn.add(agent)
    ledger.commit(txn)

Each ``commit`` is one SQLite transaction: it appends a row to the commit
log and upserts every added entity, or does nothing at all on failure.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import insert, select, update

from swarmtir._helpers import now_iso
from swarmtir.infrastructure.ledger.engine import init_ledger_database
from swarmtir.infrastructure.ledger.schema import entities, transaction_entries, transactions

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Entity:
    """A ledger record identified by ``(kind, name)``.

    ``exists`` is True when the entity was fetched from committed state
    rather than created fresh by a lookup.
    """

    kind: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)
    exists: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> Entity:
        self.data[key] = value
        return self

    def update(self, **fields: Any) -> Entity:
        self.data.update(fields)
        return self


@dataclass(frozen=True)
class CommittedEntry:
    """One entity snapshot as written by a commit."""

    transaction_id: int
    position: int
    kind: str
    name: str
    data: dict[str, Any]


@dataclass
class LedgerTransaction:
    """Pending writes against a ledger; nothing is stored until commit."""

    _ledger: Ledger
    entries: list[Entity] = field(default_factory=list)
    committed: bool = False

    def lookup(self, kind: str, name: str) -> Entity:
        """Create-or-fetch an entity, preferring one already added here."""
        for entity in self.entries:
            if entity.kind == kind and entity.name == name:
                return entity
        return self._ledger.lookup_or_create(kind, name)

    def add(self, entity: Entity) -> None:
        if self.committed:
            msg = "Cannot add to a committed ledger transaction"
            raise ValueError(msg)
        if entity not in self.entries:
            self.entries.append(entity)


class Ledger(Protocol):
    """Capability the provisioner writes registrations through."""

    def begin_transaction(self) -> LedgerTransaction: ...

    def lookup_or_create(self, kind: str, name: str) -> Entity: ...

    def commit(self, txn: LedgerTransaction) -> int: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


class SqlLedger:
    """Ledger stored in ``{conf_dir}/ledger.db``."""

    def __init__(self, conf_dir: Path) -> None:
        self._conf_dir = conf_dir
        self._engine: Engine = init_ledger_database(conf_dir)

    @property
    def conf_dir(self) -> Path:
        return self._conf_dir

    @property
    def engine(self) -> Engine:
        """The underlying SQLAlchemy engine (for direct access when needed)."""
        return self._engine

    def begin_transaction(self) -> LedgerTransaction:
        return LedgerTransaction(_ledger=self)

    def lookup_or_create(self, kind: str, name: str) -> Entity:
        existing = self.get(kind, name)
        if existing is not None:
            return existing
        return Entity(kind=kind, name=name)

    def get(self, kind: str, name: str) -> Entity | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(entities.c.data).where(entities.c.kind == kind, entities.c.name == name)
            ).first()
        if row is None:
            return None
        return Entity(kind=kind, name=name, data=json.loads(row.data), exists=True)

    def commit(self, txn: LedgerTransaction) -> int:
        """Write *txn* atomically and return its transaction id."""
        if txn.committed:
            msg = "Ledger transaction already committed"
            raise ValueError(msg)

        now = now_iso()
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(transactions).values(committed=now, entry_count=len(txn.entries))
            )
            txn_id = int(result.inserted_primary_key[0])

            for position, entity in enumerate(txn.entries):
                payload = json.dumps(entity.data, sort_keys=True)
                conn.execute(
                    insert(transaction_entries).values(
                        transaction_id=txn_id,
                        position=position,
                        kind=entity.kind,
                        name=entity.name,
                        data=payload,
                    )
                )
                current = conn.execute(
                    select(entities.c.kind).where(
                        entities.c.kind == entity.kind,
                        entities.c.name == entity.name,
                    )
                ).first()
                if current is None:
                    conn.execute(
                        insert(entities).values(
                            kind=entity.kind,
                            name=entity.name,
                            data=payload,
                            created=now,
                            modified=now,
                        )
                    )
                else:
                    conn.execute(
                        update(entities)
                        .where(entities.c.kind == entity.kind, entities.c.name == entity.name)
                        .values(data=payload, modified=now)
                    )

        txn.committed = True
        for entity in txn.entries:
            entity.exists = True
        logger.debug("Ledger %s committed transaction %d", self._conf_dir, txn_id)
        return txn_id

    def entities(self, kind: str | None = None) -> list[Entity]:
        """Current entities, optionally filtered by *kind*, in name order."""
        stmt = select(entities.c.kind, entities.c.name, entities.c.data).order_by(
            entities.c.kind, entities.c.name
        )
        if kind is not None:
            stmt = stmt.where(entities.c.kind == kind)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            Entity(kind=row.kind, name=row.name, data=json.loads(row.data), exists=True)
            for row in rows
        ]

    def history(self, kind: str | None = None) -> list[CommittedEntry]:
        """Committed entity snapshots in commit order."""
        stmt = select(
            transaction_entries.c.transaction_id,
            transaction_entries.c.position,
            transaction_entries.c.kind,
            transaction_entries.c.name,
            transaction_entries.c.data,
        ).order_by(transaction_entries.c.transaction_id, transaction_entries.c.position)
        if kind is not None:
            stmt = stmt.where(transaction_entries.c.kind == kind)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            CommittedEntry(
                transaction_id=row.transaction_id,
                position=row.position,
                kind=row.kind,
                name=row.name,
                data=json.loads(row.data),
            )
            for row in rows
        ]

    def transaction_count(self) -> int:
        with self._engine.connect() as conn:
            return len(conn.execute(select(transactions.c.id)).fetchall())

    def close(self) -> None:
        """Release pooled connections so the files can be removed."""
        self._engine.dispose()


def open_ledger(conf_dir: Path) -> SqlLedger:
    """Open (creating if needed) the ledger stored under *conf_dir*."""
    return SqlLedger(conf_dir)
