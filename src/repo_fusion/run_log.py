from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from repo_fusion.config import SkippedFile, SymlinkAuditEntry
from repo_fusion.logging import logger

if TYPE_CHECKING:
    from repo_fusion.settings import Settings

LOG_SUFFIX = ".log"
MAX_LISTED_FILES = 10


class RunStats(BaseModel):
    """Counters accumulated by the orchestrator over one run.

    Attributes:
        files_found: Files whose extension matched, before ignore rules.
        files_filtered: Candidates left after the ignore rules.
        files_processed: Files that made it into the artifacts.
        bytes_processed: On-disk size of the processed files.
        skipped: File-local rejections, in processing order.
        secret_counts: Replacements per secret category.
        secret_files: Relative paths of files that had secrets redacted.
    """

    started_at: datetime
    duration_s: float = 0.0
    extensions: list[str] = Field(default_factory=list)
    unknown_groups: list[str] = Field(default_factory=list)
    unconfigured_extensions: list[str] = Field(default_factory=list)
    files_found: int = 0
    files_filtered: int = 0
    files_processed: int = 0
    bytes_processed: int = 0
    skipped: list[SkippedFile] = Field(default_factory=list)
    secret_counts: dict[str, int] = Field(default_factory=dict)
    secret_files: list[str] = Field(default_factory=list)
    minified_files: list[str] = Field(default_factory=list)
    symlink_entries: list[SymlinkAuditEntry] = Field(default_factory=list)
    symlinks_seen: int = 0
    symlink_limit_reached: bool = False
    artifacts: list[str] = Field(default_factory=list)

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)

    def skip(self, relative_path: str, code: str, reason: str) -> None:
        self.skipped.append(SkippedFile(relative_path=relative_path, code=code, reason=reason))
        logger.info("file_skipped", path=relative_path, code=code, reason=reason)


def _listing(out: io.StringIO, items: list[str]) -> None:
    for item in items[:MAX_LISTED_FILES]:
        out.write(f"  - {item}\n")
    if len(items) > MAX_LISTED_FILES:
        out.write(f"  ... and {len(items) - MAX_LISTED_FILES} more\n")


def render_run_log(settings: Settings, stats: RunStats, *, status: str, message: str) -> str:
    """Render the human readable run log.

    Secret values never appear here, only category names and counts.

    Args:
        settings (Settings): the run settings (echoed)
        stats (RunStats): the counters of the run
        status (str): ``success`` or the failure code
        message (str): one-line outcome

    Returns:
        str: the log text
    """
    out = io.StringIO()
    out.write("=== PROJECT FUSION RUN ===\n")
    out.write(f"Status: {status}\n")
    out.write(f"Message: {message}\n")
    out.write(f"Start time: {stats.started_at.isoformat(timespec='seconds')}\n")

    out.write("\n--- CONFIGURATION ---\n")
    for key, value in settings.model_dump(mode="json").items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "(none)"  # noqa: PLW2901
        out.write(f"{key}: {value}\n")
    out.write(f"Extensions: {', '.join(stats.extensions) or '(none)'}\n")
    if stats.unknown_groups:
        out.write(f"Unknown extension groups: {', '.join(stats.unknown_groups)}\n")

    out.write("\n--- COUNTS ---\n")
    out.write(f"Files found: {stats.files_found}\n")
    out.write(f"Files after filtering: {stats.files_filtered}\n")
    out.write(f"Files processed: {stats.files_processed}\n")
    out.write(f"Files skipped: {stats.files_skipped}\n")
    out.write(f"Total data processed: {stats.bytes_processed / (1024 * 1024):.2f} MB\n")
    if stats.unconfigured_extensions:
        out.write(f"Other extensions present: {', '.join(stats.unconfigured_extensions)}\n")

    if stats.skipped:
        out.write("\n--- SKIPPED FILES ---\n")
        for item in stats.skipped:
            out.write(f"  - {item.relative_path}: {item.reason} [{item.code}]\n")

    if stats.minified_files:
        out.write("\n--- CONTENT ANALYSIS ---\n")
        out.write(f"Minified files detected: {len(stats.minified_files)}\n")
        _listing(out, stats.minified_files)

    if stats.secret_counts:
        out.write("\n--- SECURITY ---\n")
        out.write(f"Files with secrets redacted: {len(stats.secret_files)}\n")
        out.write("Secret types found:\n")
        for name, count in sorted(stats.secret_counts.items(), key=lambda kv: (-kv[1], kv[0])):
            out.write(f"  - {name}: {count} occurrence(s)\n")
        out.write("Files affected:\n")
        _listing(out, stats.secret_files)

    if stats.symlinks_seen:
        out.write("\n--- SYMLINK AUDIT ---\n")
        out.write(f"Symlinks followed: {stats.symlinks_seen}\n")
        for entry in stats.symlink_entries:
            out.write(
                f"  - {entry.symlink_path} -> {entry.resolved_target_path} "
                f"({entry.target_kind}) at {entry.timestamp.isoformat(timespec='seconds')}\n",
            )
        if stats.symlink_limit_reached:
            out.write(f"Audit limit reached: only the first {len(stats.symlink_entries)} symlinks are recorded\n")

    out.write("\n--- PERFORMANCE ---\n")
    duration = max(stats.duration_s, 1e-9)
    out.write(f"Duration: {stats.duration_s:.3f}s\n")
    out.write(f"File processing rate: {stats.files_processed / duration:.2f} files/s\n")
    out.write(f"Data throughput: {stats.bytes_processed / (1024 * 1024) / duration:.2f} MB/s\n")
    if stats.artifacts:
        out.write(f"Artifacts: {', '.join(stats.artifacts)}\n")
    return out.getvalue()


def write_run_log(
    directory: Path,
    base_name: str,
    settings: Settings,
    stats: RunStats,
    *,
    status: str,
    message: str,
) -> Path:
    path = directory / f"{base_name}{LOG_SUFFIX}"
    path.write_text(render_run_log(settings, stats, status=status, message=message), encoding="utf-8")
    logger.info("run_log_written", path=path.name, status=status)
    return path
