"""repo-fusion: merge a project's source files into single text, Markdown and HTML documents.

Files are selected by extension groups, filtered through ``.gitignore`` and
user patterns, checked against the root boundary, the symlink policy and the
size ceilings, then redacted for secrets before being written.

Usage
-----
    repo-fusion --root . --groups backend,config
    repo-fusion --formats md --ignore "tests/" --name snapshot
    repo-fusion --groups-file groups.yaml --groups mygroup --log-file fusion-debug.log
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from repo_fusion.logging import setup_logging
from repo_fusion.pipeline import RunSuccess, run_fusion
from repo_fusion.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Sequence

FORMAT_FLAGS = {"txt": "generate_text", "md": "generate_markdown", "html": "generate_html"}

LIMIT_FLAGS: list[tuple[str, type, str]] = [
    ("--max-file-size-kb", int, "Per-file size ceiling in KB."),
    ("--max-files", int, "Maximum number of files."),
    ("--max-total-size-mb", float, "Aggregate size ceiling in MB."),
    ("--max-base64-block-kb", int, "Largest base64 block in KB (0 disables)."),
    ("--max-line-length", int, "Longest line allowed (0 disables)."),
    ("--max-token-length", int, "Longest token allowed (0 disables)."),
    ("--max-symlink-audit-entries", int, "Symlink audit entries to record."),
]


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def load_groups_file(path: Path) -> dict[str, list[str]]:
    """Read extra extension groups from a YAML mapping of group name to extensions.

    Args:
        path (Path): the YAML file

    Raises:
        ValueError: if the document is not a mapping of names to lists of strings.

    Returns:
        dict[str, list[str]]: the groups
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        msg = f"{path.name}: expected a mapping of group names to extension lists"
        raise ValueError(msg)  # noqa: TRY004
    groups: dict[str, list[str]] = {}
    for name, exts in data.items():
        if not isinstance(exts, list) or not all(isinstance(e, str) for e in exts):
            msg = f"{path.name}: group {name!r} must be a list of extensions"
            raise ValueError(msg)
        groups[str(name)] = exts
    return groups


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="repo-fusion",
        description="Fuse a project's files into single txt/md/html documents.",
    )
    p.add_argument("--root", type=str, default=None, help="Root directory (default: current directory).")
    p.add_argument("--groups", type=str, default=None, help="Comma list of extension groups, or 'all'.")
    p.add_argument("--groups-file", type=str, default=None, help="YAML file with extra extension groups.")
    p.add_argument(
        "--ignore",
        action="append",
        default=[],
        help="Extra gitignore-style pattern (repeatable).",
    )
    p.add_argument("--no-gitignore", action="store_true", help="Do not apply the root .gitignore.")
    p.add_argument("--no-subdirs", action="store_true", help="Only look at files directly under the root.")
    p.add_argument("--allow-symlinks", action="store_true", help="Follow symbolic links inside the root.")
    p.add_argument("--keep-secrets", action="store_true", help="Do not redact detected secrets.")
    p.add_argument("--formats", type=str, default=None, help="Comma list among txt,md,html.")
    p.add_argument("--name", type=str, default=None, help="Base name of the generated files.")
    p.add_argument("--output-dir", type=str, default=None, help="Artifact directory, inside the root.")
    p.add_argument("--log-file", type=str, default=None, help="Diagnostic log file path.")
    for flag, kind, help_text in LIMIT_FLAGS:
        p.add_argument(flag, type=kind, default=None, help=help_text)
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = build_parser()
    args = p.parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.root is not None:
        overrides["root"] = Path(args.root)
    if args.groups is not None:
        overrides["extension_groups"] = _split(args.groups)
    if args.groups_file is not None:
        try:
            overrides["extra_extension_groups"] = load_groups_file(Path(args.groups_file))
        except (OSError, ValueError, yaml.YAMLError) as e:
            p.error(f"--groups-file: {e}")
    if args.no_gitignore:
        overrides["use_gitignore"] = False
    if args.no_subdirs:
        overrides["parse_subdirectories"] = False
    if args.allow_symlinks:
        overrides["allow_symlinks"] = True
    if args.keep_secrets:
        overrides["exclude_secrets"] = False
    if args.formats is not None:
        formats = _split(args.formats)
        unknown = sorted(set(formats) - set(FORMAT_FLAGS))
        if unknown or not formats:
            p.error(f"--formats: expected a comma list among {', '.join(FORMAT_FLAGS)}")
        overrides.update({field: key in formats for key, field in FORMAT_FLAGS.items()})
    if args.name is not None:
        overrides["generated_file_name"] = args.name
    if args.output_dir is not None:
        overrides["output_dir"] = Path(args.output_dir)
    if args.log_file is not None:
        overrides["log_file"] = args.log_file
    for flag, _kind, _help in LIMIT_FLAGS:
        dest = flag.removeprefix("--").replace("-", "_")
        value = getattr(args, dest)
        if value is not None:
            overrides[dest] = value

    try:
        settings = Settings.from_env(**overrides)
    except ValidationError as e:
        p.error(str(e))
    if args.ignore:
        settings = settings.model_copy(update={"ignore_patterns": [*settings.ignore_patterns, *args.ignore]})
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)

    result = run_fusion(settings)
    if isinstance(result, RunSuccess):
        names = ", ".join(p.name for p in result.artifacts) or "(no artifact)"
        print(f"Wrote {names} files={result.files_processed} skipped={result.files_skipped}")
        return 0
    print(f"{result.code}: {result.message}", file=sys.stderr)
    print(f"Hint: {result.hint}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
