"""Workspace directories for a test run.

INVARIANT: One root per runner. The root is created atomically by
``tempfile.mkdtemp`` so concurrent runners never share a directory, and
every domain workspace nests under it.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "psk_"


def create_root(prefix: str = DEFAULT_PREFIX, base: str | Path | None = None) -> Path:
    """Create and return a uniquely named root directory.

    *base* defaults to the platform temp directory.
    """
    return Path(tempfile.mkdtemp(prefix=prefix, dir=base))


def remove_tree(path: Path) -> bool:
    """Delete *path* and everything below it, deepest entries first.

    Returns False without touching the filesystem when *path* does not
    exist. Errors during deletion propagate to the caller.
    """
    if not path.exists() and not path.is_symlink():
        return False
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
    return True


def find_stale_roots(
    prefix: str = DEFAULT_PREFIX,
    base: str | Path | None = None,
    *,
    older_than: float = 0.0,
) -> list[Path]:
    """List root workspaces under *base* last modified over *older_than* seconds ago.

    Roots are left behind when a test process dies before teardown.
    """
    base_dir = Path(base) if base is not None else Path(tempfile.gettempdir())
    if not base_dir.is_dir():
        return []
    cutoff = time.time() - older_than
    stale: list[Path] = []
    for candidate in base_dir.glob(f"{prefix}*"):
        if not candidate.is_dir():
            continue
        try:
            if candidate.stat().st_mtime <= cutoff:
                stale.append(candidate)
        except OSError:
            continue
    return sorted(stale)


def sweep_stale_roots(
    prefix: str = DEFAULT_PREFIX,
    base: str | Path | None = None,
    *,
    older_than: float = 0.0,
    dry_run: bool = False,
) -> tuple[list[Path], list[str]]:
    """Remove stale root workspaces (best-effort).

    Returns ``(removed, warnings)``. With *dry_run* nothing is deleted and
    ``removed`` lists what would have been.
    """
    removed: list[Path] = []
    warnings: list[str] = []
    for root in find_stale_roots(prefix, base, older_than=older_than):
        if dry_run:
            removed.append(root)
            continue
        try:
            remove_tree(root)
        except OSError as exc:
            logger.warning("Failed to remove stale workspace %s: %s", root, exc)
            warnings.append(f"{root}: {exc}")
        else:
            removed.append(root)
    return removed, warnings
