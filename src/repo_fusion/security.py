from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

from repo_fusion.config import SymlinkAuditEntry, TargetKind
from repo_fusion.exceptions import PathTraversalError, SymlinkNotAllowedError
from repo_fusion.logging import logger


def validate_path(path: str | Path, root: str | Path) -> Path:
    """Confirm that `path` resolves inside `root`.

    Both paths are canonicalized (symlinks and ``..`` segments resolved), then
    the relative path from root to path is computed. Comparing components
    rather than string prefixes keeps ``/srv/app`` from accepting
    ``/srv/application/x``.

    Args:
        path (str | Path): the candidate path
        root (str | Path): the root directory

    Raises:
        PathTraversalError: if the canonical path escapes the root.

    Returns:
        Path: the canonical absolute path.
    """
    canonical_root = Path(root).resolve()
    canonical = Path(path).resolve()
    try:
        rel = os.path.relpath(canonical, canonical_root)
    except ValueError as e:
        # different drives on Windows
        raise PathTraversalError(path=Path(path), root=canonical_root) from e
    first = rel.split(os.sep, 1)[0]
    if first == os.pardir or os.path.isabs(rel):
        raise PathTraversalError(path=Path(path), root=canonical_root)
    return canonical


def is_inside(path: str | Path, root: str | Path) -> bool:
    try:
        validate_path(path, root)
    except PathTraversalError:
        return False
    return True


def classify_target(target: Path) -> TargetKind:
    if target.is_dir():
        return TargetKind.DIR
    if target.exists():
        return TargetKind.FILE
    return TargetKind.MISSING


class SymlinkAuditor:
    """Per-run symlink policy and bounded audit trail.

    Attributes:
        allow_symlinks: Whether links may be followed at all.
        max_entries: Cap on recorded audit entries.
        entries: Recorded entries, never longer than `max_entries`.
        seen: Number of links audited, recorded or not.
        limit_reached: Whether the cap notice has been emitted.
    """

    def __init__(self, root: Path, *, allow_symlinks: bool, max_entries: int) -> None:
        self.root = root
        self.allow_symlinks = allow_symlinks
        self.max_entries = max(0, max_entries)
        self.entries: list[SymlinkAuditEntry] = []
        self.seen = 0
        self.limit_reached = False

    def _display(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.name

    def audit(self, path: Path) -> bool:
        """Apply the symlink policy to `path`.

        Args:
            path (Path): the path as discovered (not resolved)

        Raises:
            SymlinkNotAllowedError: if `path` is a link and links are disabled.

        Returns:
            bool: True if `path` is a symbolic link that may be followed.
        """
        if not path.is_symlink():
            return False
        if not self.allow_symlinks:
            raise SymlinkNotAllowedError(path=path)

        target = path.resolve()
        kind = classify_target(target)
        self.seen += 1
        if len(self.entries) < self.max_entries:
            self.entries.append(
                SymlinkAuditEntry(
                    symlink_path=self._display(path),
                    resolved_target_path=self._display(target),
                    target_kind=kind,
                    timestamp=datetime.now(UTC),
                ),
            )
            logger.info("symlink_followed", path=self._display(path), target_kind=str(kind))
        elif not self.limit_reached:
            self.limit_reached = True
            logger.warning("symlink_audit_limit_reached", max_entries=self.max_entries)
        return True
