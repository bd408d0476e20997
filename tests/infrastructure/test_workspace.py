"""Tests for root workspace creation, removal, and sweeping."""

import os
import time
from pathlib import Path

import pytest

from swarmtir.infrastructure.workspace import (
    create_root,
    find_stale_roots,
    remove_tree,
    sweep_stale_roots,
)


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


class TestCreateRoot:
    def test_prefix_and_base(self, tmp_path: Path) -> None:
        root = create_root("psk_", tmp_path)
        assert root.is_dir()
        assert root.parent == tmp_path
        assert root.name.startswith("psk_")

    def test_unique_roots(self, tmp_path: Path) -> None:
        roots = {create_root("psk_", tmp_path) for _ in range(25)}
        assert len(roots) == 25

    def test_missing_base_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            create_root("psk_", tmp_path / "missing")


class TestRemoveTree:
    def test_missing_path(self, tmp_path: Path) -> None:
        before = sorted(tmp_path.iterdir())
        assert remove_tree(tmp_path / "gone") is False
        assert sorted(tmp_path.iterdir()) == before

    def test_nested_tree(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        deep = root / "nodes" / "local" / "outbound" / "abcdefghi"
        deep.mkdir(parents=True)
        (deep / "reply.json").write_text("{}")
        (root / "nodes" / "local" / "constitution.py").write_text("")

        assert remove_tree(root) is True
        assert not root.exists()
        assert tmp_path.exists()

    def test_single_file(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        target.write_text("x")
        assert remove_tree(target) is True
        assert not target.exists()

    def test_symlink_not_followed(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        link = tmp_path / "link"
        link.symlink_to(outside, target_is_directory=True)

        assert remove_tree(link) is True
        assert not link.exists()
        assert (outside / "keep.txt").exists()


class TestSweepStaleRoots:
    def test_finds_only_old_prefixed_dirs(self, tmp_path: Path) -> None:
        old = create_root("psk_", tmp_path)
        fresh = create_root("psk_", tmp_path)
        other = tmp_path / "unrelated"
        other.mkdir()
        _age(old, 7200)
        _age(other, 7200)

        stale = find_stale_roots("psk_", tmp_path, older_than=3600)
        assert stale == [old]
        assert fresh.exists()

    def test_missing_base(self, tmp_path: Path) -> None:
        assert find_stale_roots("psk_", tmp_path / "missing") == []

    def test_sweep_removes(self, tmp_path: Path) -> None:
        old = create_root("psk_", tmp_path)
        (old / "conf").mkdir()
        _age(old, 7200)

        removed, warnings = sweep_stale_roots("psk_", tmp_path, older_than=3600)
        assert removed == [old]
        assert warnings == []
        assert not old.exists()

    def test_dry_run_keeps(self, tmp_path: Path) -> None:
        old = create_root("psk_", tmp_path)
        _age(old, 7200)

        removed, warnings = sweep_stale_roots("psk_", tmp_path, older_than=3600, dry_run=True)
        assert removed == [old]
        assert warnings == []
        assert old.exists()

    def test_removal_failure_becomes_warning(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        old = create_root("psk_", tmp_path)
        _age(old, 7200)

        def _fail(path: Path) -> bool:
            raise PermissionError("denied")

        monkeypatch.setattr("swarmtir.infrastructure.workspace.remove_tree", _fail)
        removed, warnings = sweep_stale_roots("psk_", tmp_path, older_than=3600)
        assert removed == []
        assert len(warnings) == 1
        assert "denied" in warnings[0]
        assert old.exists()
