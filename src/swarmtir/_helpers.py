"""Shared helper functions."""

from __future__ import annotations

from datetime import UTC, datetime


def now_iso() -> str:
    """Current UTC time as standard ISO 8601 (ledger commits, request artifacts)."""
    return datetime.now(UTC).isoformat()
