from __future__ import annotations

import os
import re
import stat
from collections.abc import Mapping, Sequence
from pathlib import Path

import pathspec
from pydantic import BaseModel, ConfigDict, Field

from repo_fusion.config import GENERATED_SUFFIXES, CandidateFile
from repo_fusion.logging import logger

ALL_GROUPS = "all"
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\!#])")


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root, with POSIX separators.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path; the bare file name if `path` is not under `root`
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.name


def normalize_extension(ext: str) -> str:
    ext = ext.strip()
    return ext if ext.startswith(".") else f".{ext}"


def merge_extension_groups(
    base: Mapping[str, Sequence[str]],
    extra: Mapping[str, Sequence[str]] | None,
) -> dict[str, list[str]]:
    """Merge contributed extension groups into a copy of `base`.

    A contributed group with an existing name extends that group; order is
    kept and duplicates are dropped.

    Args:
        base (Mapping[str, Sequence[str]]): the starting groups
        extra (Mapping[str, Sequence[str]] | None): groups to add

    Returns:
        dict[str, list[str]]: the merged groups
    """
    merged = {name: [normalize_extension(e) for e in exts] for name, exts in base.items()}
    for name, exts in (extra or {}).items():
        current = merged.setdefault(name, [])
        for ext in exts:
            ext_n = normalize_extension(ext)
            if ext_n not in current:
                current.append(ext_n)
    return merged


def resolve_extensions(
    groups: Mapping[str, Sequence[str]],
    requested: Sequence[str] | None,
) -> tuple[list[str], list[str]]:
    """Resolve requested group names to a flat extension list.

    Args:
        groups (Mapping[str, Sequence[str]]): the available groups
        requested (Sequence[str] | None): group names; empty or ``["all"]`` selects every group

    Returns:
        tuple[list[str], list[str]]: the de-duplicated extensions (first-seen
            order) and the unknown group names
    """
    names = [n.strip() for n in (requested or []) if n.strip()]
    if not names or ALL_GROUPS in names:
        names = list(groups)
    extensions: list[str] = []
    unknown: list[str] = []
    for name in names:
        if name not in groups:
            unknown.append(name)
            logger.warning("unknown_extension_group", group=name)
            continue
        for ext in groups[name]:
            ext_n = normalize_extension(ext)
            if ext_n not in extensions:
                extensions.append(ext_n)
    return extensions, unknown


def generated_file_names(generated_file_name: str, suffixes: Sequence[str] = GENERATED_SUFFIXES) -> list[str]:
    return [f"{generated_file_name}{suffix}" for suffix in suffixes]


def clean_patterns(patterns: Sequence[str]) -> list[str]:
    """Drop blank lines and comments; normalize separators."""
    out: list[str] = []
    for p in patterns:
        p2 = (p or "").strip()
        if not p2 or p2.startswith("#"):
            continue
        out.append(p2.replace("\\", "/"))
    return out


class IgnoreRuleSet:
    """Layered gitignore-style exclusion rules.

    A path is ignored if any layer matches it; later layers never re-include
    what an earlier layer excluded.
    """

    def __init__(self) -> None:
        self.layers: list[tuple[str, pathspec.PathSpec]] = []

    def add_layer(self, name: str, patterns: Sequence[str]) -> None:
        lines = clean_patterns(patterns)
        if lines:
            self.layers.append((name, pathspec.PathSpec.from_lines("gitwildmatch", lines)))

    @classmethod
    def build(
        cls,
        root: Path,
        *,
        use_gitignore: bool,
        patterns: Sequence[str],
        generated_names: Sequence[str] = (),
    ) -> IgnoreRuleSet:
        """Build the rule layers for one run.

        Args:
            root (Path): the run root; its ``.gitignore`` is read when enabled
            use_gitignore (bool): whether to load the ``.gitignore`` layer
            patterns (Sequence[str]): explicit user patterns
            generated_names (Sequence[str]): the run's own artifact file names

        Returns:
            IgnoreRuleSet: the layered rules
        """
        rules = cls()
        if use_gitignore:
            gitignore = root / ".gitignore"
            if gitignore.is_file() and not gitignore.is_symlink():
                rules.add_layer("gitignore", gitignore.read_text(encoding="utf-8", errors="replace").splitlines())
        rules.add_layer("user", patterns)
        rules.add_layer("generated", [f"/{name}" for name in generated_names])
        return rules

    def matching_layer(self, rel: str) -> str | None:
        for name, spec in self.layers:
            if spec.match_file(rel):
                return name
        return None

    def ignores(self, rel: str) -> bool:
        return self.matching_layer(rel) is not None


def build_include_spec(extensions: Sequence[str], *, recursive: bool) -> pathspec.PathSpec:
    """Build the single include matcher for one discovery call.

    Args:
        extensions (Sequence[str]): the merged extension list
        recursive (bool): match at any depth, or only directly under the root

    Returns:
        pathspec.PathSpec: a spec matching relative paths with those extensions
    """
    prefix = "" if recursive else "/"
    escaped = [_GLOB_SPECIAL.sub(r"\\\1", normalize_extension(ext)) for ext in extensions]
    lines = [f"{prefix}*{ext}" for ext in escaped]
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def _is_regular_or_link(path: str) -> bool:
    try:
        st = os.lstat(path)
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode) or stat.S_ISLNK(st.st_mode)


class DiscoveryResult(BaseModel):
    """Candidates plus the counts reported in the run log."""

    model_config = ConfigDict(frozen=True)

    candidates: tuple[CandidateFile, ...] = ()
    files_found: int = Field(default=0, description="Files matching the extensions")
    files_ignored: int = Field(default=0, description="Matches removed by ignore rules")
    unconfigured_extensions: tuple[str, ...] = Field(
        default=(),
        description="Extensions present in the tree but not selected",
    )


def scan(
    root: Path,
    extensions: Sequence[str],
    *,
    recursive: bool,
    ignore_rules: IgnoreRuleSet,
) -> DiscoveryResult:
    """Walk `root` and return the ordered candidates with discovery counts.

    The walk never follows symbolic links into directories; file links are
    yielded and judged later by the symlink policy. Directories are never
    yielded.
    """
    include = build_include_spec(extensions, recursive=recursive)
    suffixes = tuple(normalize_extension(ext) for ext in extensions)
    matched: list[CandidateFile] = []
    ignored = 0
    other_exts: set[str] = set()

    for dirpath, dirs, files in os.walk(root, followlinks=False):
        rel_dir = relpath(Path(dirpath), root)
        rel_dir = "" if rel_dir == "." else rel_dir
        if not recursive:
            dirs[:] = []
        else:
            dirs[:] = sorted(
                d for d in dirs if not ignore_rules.ignores(f"{rel_dir}/{d}/" if rel_dir else f"{d}/")
            )
        for name in files:
            full = os.path.join(dirpath, name)
            if not _is_regular_or_link(full):
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            # a bare `*.py` rule also matches files under a directory named `x.py`
            if not (name.endswith(suffixes) and include.match_file(rel)):
                suffix = Path(name).suffix
                if suffix and not ignore_rules.ignores(rel):
                    other_exts.add(suffix.lower())
                continue
            if ignore_rules.ignores(rel):
                ignored += 1
                continue
            matched.append(CandidateFile(absolute_path=Path(full), relative_path=rel))

    matched.sort(key=lambda c: c.relative_path)
    logger.info("discovery_complete", found=len(matched) + ignored, kept=len(matched), ignored=ignored)
    return DiscoveryResult(
        candidates=tuple(matched),
        files_found=len(matched) + ignored,
        files_ignored=ignored,
        unconfigured_extensions=tuple(sorted(other_exts)),
    )


def discover(
    root: Path,
    extensions: Sequence[str],
    recursive: bool,  # noqa: FBT001
    ignore_rules: IgnoreRuleSet,
) -> list[CandidateFile]:
    """Return the candidate files under `root`, sorted by relative path."""
    return list(scan(root, extensions, recursive=recursive, ignore_rules=ignore_rules).candidates)
