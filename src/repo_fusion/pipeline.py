"""Pipeline orchestrator.

One sequential pass: discovery, per-file validation and inspection, then
streaming of every enabled format. All per-run state (ledger, symlink
auditor, binary cache, counters) lives on a `FusionRun` instance.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from repo_fusion.config import (
    EXTENSION_GROUPS,
    GENERATED_SUFFIXES,
    CandidateFile,
    FileRecord,
    SecretFound,
    SkippedFile,
    SymlinkAuditEntry,
    is_fatal,
)
from repo_fusion.discovery import (
    IgnoreRuleSet,
    generated_file_names,
    merge_extension_groups,
    relpath,
    resolve_extensions,
    scan,
)
from repo_fusion.exceptions import (
    RepoFusionError,
    RunCancelledError,
    SizeLimitExceededError,
    TooManyFilesError,
)
from repo_fusion.inspection import BinaryCache, ContentInspector, ContentLimits
from repo_fusion.ledger import ResourceLedger
from repo_fusion.logging import logger
from repo_fusion.output_construction import OutputGenerator, RenderContext, builtin_generators
from repo_fusion.plugins import Plugin, PluginManager
from repo_fusion.redaction import redact
from repo_fusion.run_log import RunStats, write_run_log
from repo_fusion.security import SymlinkAuditor, is_inside, validate_path
from repo_fusion.settings import Settings

CancelFn = Callable[[], bool]

UNREADABLE = "UNREADABLE"
NOT_A_FILE = "NOT_A_FILE"
PLUGIN_VETO = "PLUGIN_VETO"


class RunSuccess(BaseModel):
    """A completed run.

    Attributes:
        artifacts: Written artifact paths, one per enabled format.
        log_path: The run log.
        files_found: Files matching the extensions, before ignore rules.
        files_filtered: Candidates left after ignore rules.
        files_processed: Files written to the artifacts.
        files_skipped: Candidates rejected for a file-local reason.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    artifacts: tuple[Path, ...] = ()
    log_path: Path | None = None
    files_found: int = 0
    files_filtered: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    total_bytes: int = 0
    skipped: tuple[SkippedFile, ...] = ()
    secret_counts: dict[str, int] = Field(default_factory=dict)
    symlink_audit: tuple[SymlinkAuditEntry, ...] = ()

    @property
    def ok(self) -> bool:
        return True


class _Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    message: str
    hint: str
    files_processed: int = Field(default=0, description="Files accepted before the run stopped")
    total_bytes: int = Field(default=0, description="Bytes accepted before the run stopped")
    log_path: Path | None = None

    @property
    def ok(self) -> bool:
        return False


class NoExtensionsFailure(_Failure):
    code: Literal["NO_EXTENSIONS"] = "NO_EXTENSIONS"
    hint: str = "Select at least one known extension group, or 'all'."
    unknown_groups: tuple[str, ...] = ()


class RootNotFoundFailure(_Failure):
    code: Literal["ROOT_NOT_FOUND"] = "ROOT_NOT_FOUND"
    hint: str = "Point the root at an existing directory."


class NoFilesFoundFailure(_Failure):
    code: Literal["NO_FILES_FOUND"] = "NO_FILES_FOUND"
    hint: str = "Widen the extension groups or relax the ignore patterns."


class TooManyFilesFailure(_Failure):
    code: Literal["TOO_MANY_FILES"] = "TOO_MANY_FILES"
    hint: str = "Narrow the extension groups, add ignore patterns, or raise max_files."
    count: int = 0
    limit: int = 0


class SizeLimitExceededFailure(_Failure):
    code: Literal["SIZE_LIMIT_EXCEEDED"] = "SIZE_LIMIT_EXCEEDED"
    hint: str = "Narrow the extension groups, add ignore patterns, or raise max_total_size_mb."
    limit_bytes: int = 0


class PathTraversalFailure(_Failure):
    code: Literal["PATH_TRAVERSAL"] = "PATH_TRAVERSAL"
    hint: str = "Choose an output directory inside the root."


class CancelledFailure(_Failure):
    code: Literal["CANCELLED"] = "CANCELLED"
    hint: str = "The run was cancelled; no artifacts were kept."


RunFailure = Annotated[
    NoExtensionsFailure
    | RootNotFoundFailure
    | NoFilesFoundFailure
    | TooManyFilesFailure
    | SizeLimitExceededFailure
    | PathTraversalFailure
    | CancelledFailure,
    Field(discriminator="code"),
]
RunResult = RunSuccess | RunFailure
_RESULT_ADAPTER: TypeAdapter[RunResult] = TypeAdapter(RunResult)


class _Abort(Exception):  # noqa: N818
    def __init__(self, failure: _Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class FusionRun:
    """State and stages of a single fusion run."""

    def __init__(
        self,
        settings: Settings,
        *,
        plugins: PluginManager,
        should_cancel: CancelFn | None = None,
    ) -> None:
        self.settings = settings
        self.plugins = plugins
        self.should_cancel = should_cancel
        self.root = settings.root.resolve()
        self.artifact_dir = settings.artifact_dir.resolve()
        self.stats = RunStats(started_at=datetime.now(UTC))
        self.ledger = ResourceLedger.from_settings(settings)
        self.auditor = SymlinkAuditor(
            self.root,
            allow_symlinks=settings.allow_symlinks,
            max_entries=settings.max_symlink_audit_entries,
        )
        self.inspector = ContentInspector(ContentLimits.from_settings(settings), cache=BinaryCache())
        self.extra_generators: list[OutputGenerator] = []
        self.accepted_files = 0
        self.accepted_bytes = 0

    def _cancel_requested(self) -> bool:
        return self.should_cancel is not None and bool(self.should_cancel())

    def _partial(self) -> dict[str, int]:
        # records kept so far; the ledger also books files rejected after their size check
        return {"files_processed": self.accepted_files, "total_bytes": self.accepted_bytes}

    def prepare(self) -> list[CandidateFile]:
        """Check the root and output directory, resolve extensions and discover candidates."""
        if not is_inside(self.artifact_dir, self.root):
            raise _Abort(PathTraversalFailure(message="The output directory resolves outside the root directory."))

        self.extra_generators = self.plugins.output_generators()
        groups = merge_extension_groups(EXTENSION_GROUPS, self.settings.extra_extension_groups)
        groups = merge_extension_groups(groups, self.plugins.extension_groups())
        extensions, unknown = resolve_extensions(groups, self.settings.extension_groups)
        self.stats.extensions = extensions
        self.stats.unknown_groups = unknown
        if not extensions:
            raise _Abort(
                NoExtensionsFailure(
                    message="No valid extension groups were selected.",
                    unknown_groups=tuple(unknown),
                ),
            )

        prefix = relpath(self.artifact_dir, self.root)
        prefix = "" if prefix == "." else f"{prefix}/"
        suffixes = [*GENERATED_SUFFIXES, *(g.suffix for g in self.extra_generators)]
        names = [f"{prefix}{n}" for n in generated_file_names(self.settings.generated_file_name, suffixes)]
        rules = IgnoreRuleSet.build(
            self.root,
            use_gitignore=self.settings.use_gitignore,
            patterns=self.settings.ignore_patterns,
            generated_names=names,
        )
        found = scan(self.root, extensions, recursive=self.settings.parse_subdirectories, ignore_rules=rules)
        self.stats.files_found = found.files_found
        self.stats.files_filtered = len(found.candidates)
        self.stats.unconfigured_extensions = list(found.unconfigured_extensions)

        if not found.candidates:
            raise _Abort(NoFilesFoundFailure(message="No files matched the selected extensions."))
        if len(found.candidates) > self.settings.max_files:
            raise _Abort(
                TooManyFilesFailure(
                    message=str(TooManyFilesError(count=len(found.candidates), limit=self.settings.max_files)),
                    count=len(found.candidates),
                    limit=self.settings.max_files,
                ),
            )
        return list(found.candidates)

    def load(self, candidate: CandidateFile) -> FileRecord | None:
        """Run one candidate through the per-file gates.

        Args:
            candidate (CandidateFile): the discovered file

        Raises:
            RepoFusionError: a file-local rejection (the caller skips the file),
                or a ledger breach that aborts the run.
            OSError: the file could not be read.

        Returns:
            FileRecord | None: the accepted record, or None if the file was skipped
        """
        rel = candidate.relative_path
        self.auditor.audit(candidate.absolute_path)
        canonical = validate_path(candidate.absolute_path, self.root)
        if not canonical.is_file():
            self.stats.skip(rel, NOT_A_FILE, "target is not a regular file")
            return None

        size = canonical.stat().st_size
        self.ledger.try_accept(size)
        with canonical.open("rb") as fh:
            # bounded by the size booked in the ledger
            data = fh.read(size)

        inspection = self.inspector.inspect_bytes(canonical, data)
        if inspection.is_binary:
            self.stats.skip(rel, "BINARY_CONTENT", inspection.issues[0].describe())
            return None

        text = data.decode("utf-8", errors="replace")
        issues = self.inspector.inspect_text(text, rel)
        fatal = [i for i in issues if is_fatal(i)]
        if fatal:
            self.stats.skip(rel, fatal[0].kind.upper(), "; ".join(i.describe() for i in fatal))
            return None

        if self.settings.exclude_secrets:
            redaction = redact(text)
            if redaction.found:
                text = redaction.redacted_text
                issues.append(SecretFound(categories=redaction.categories))
                for name, count in redaction.counts.items():
                    self.stats.secret_counts[name] = self.stats.secret_counts.get(name, 0) + count
                self.stats.secret_files.append(rel)
                logger.info("secrets_redacted", path=rel, categories=list(redaction.categories))

        record = FileRecord(
            relative_path=rel,
            absolute_path=canonical,
            byte_size=size,
            content=text,
            issues=tuple(issues),
        )
        if record.is_minified:
            self.stats.minified_files.append(rel)
        return record

    def process(self, candidates: Sequence[CandidateFile]) -> list[FileRecord]:
        records: list[FileRecord] = []
        for candidate in candidates:
            if self._cancel_requested():
                raise _Abort(CancelledFailure(message="Run cancelled while processing files.", **self._partial()))
            try:
                record = self.load(candidate)
            except TooManyFilesError as e:
                raise _Abort(
                    TooManyFilesFailure(message=str(e), count=e.count, limit=e.limit, **self._partial()),
                ) from e
            except SizeLimitExceededError as e:
                raise _Abort(
                    SizeLimitExceededFailure(message=str(e), limit_bytes=e.limit_bytes, **self._partial()),
                ) from e
            except RepoFusionError as e:
                self.stats.skip(candidate.relative_path, e.code, str(e))
                continue
            except OSError as e:
                self.stats.skip(candidate.relative_path, UNREADABLE, e.strerror or "file could not be read")
                continue
            if record is None:
                continue
            vetted = self.plugins.before_file(record, self.settings)
            if vetted is None:
                self.stats.skip(candidate.relative_path, PLUGIN_VETO, "skipped by a plugin")
                continue
            records.append(vetted)
            self.accepted_files += 1
            self.accepted_bytes += vetted.byte_size
        return records

    def generators(self, settings: Settings) -> list[OutputGenerator]:
        selected = builtin_generators(settings)
        taken = {g.suffix for g in selected}
        for generator in self.extra_generators:
            if generator.suffix in taken or generator.suffix == ".log":
                logger.warning("output_format_ignored", format=generator.name, suffix=generator.suffix)
                continue
            taken.add(generator.suffix)
            selected.append(generator)
        return selected

    def generate(self, settings: Settings, records: list[FileRecord]) -> list[Path]:
        context = RenderContext.from_records(self.root.name, records)
        written: list[Path] = []

        def after_file(record: FileRecord, rendered: str) -> str:
            return self.plugins.after_file(record, rendered, settings)

        try:
            for generator in self.generators(settings):
                destination = generator.destination_for(self.artifact_dir, self.settings.generated_file_name)
                written.append(
                    generator.generate(
                        records,
                        context,
                        destination,
                        after_file=after_file,
                        should_cancel=self.should_cancel,
                    ),
                )
        except RunCancelledError as e:
            for path in written:
                path.unlink(missing_ok=True)
            raise _Abort(CancelledFailure(message="Run cancelled while writing artifacts.", **self._partial())) from e
        return written

    def execute(self) -> RunResult:
        candidates = self.prepare()
        records = self.process(candidates)
        settings, records = self.plugins.before_run(self.settings, records)
        self.accepted_files = len(records)
        self.accepted_bytes = sum(r.byte_size for r in records)
        artifacts = self.generate(settings, records)

        self.stats.files_processed = len(records)
        self.stats.bytes_processed = sum(r.byte_size for r in records)
        self.stats.artifacts = [p.name for p in artifacts]
        return RunSuccess(
            artifacts=tuple(artifacts),
            files_found=self.stats.files_found,
            files_filtered=self.stats.files_filtered,
            files_processed=len(records),
            files_skipped=self.stats.files_skipped,
            total_bytes=self.stats.bytes_processed,
            skipped=tuple(self.stats.skipped),
            secret_counts=dict(self.stats.secret_counts),
        )

    def _log_dir(self) -> Path:
        return self.artifact_dir if is_inside(self.artifact_dir, self.root) else self.root

    def finish(self, result: RunResult, started: float) -> RunResult:
        """Write the run log, attach the audit trail and give plugins the last word."""
        self.stats.duration_s = time.perf_counter() - started
        self.stats.symlink_entries = list(self.auditor.entries)
        self.stats.symlinks_seen = self.auditor.seen
        self.stats.symlink_limit_reached = self.auditor.limit_reached
        if isinstance(result, RunSuccess):
            status, message = "success", f"{result.files_processed} files processed, {result.files_skipped} skipped."
            result = result.model_copy(update={"symlink_audit": tuple(self.auditor.entries)})
        else:
            status, message = result.code, result.message
            self.stats.files_processed = result.files_processed
            self.stats.bytes_processed = result.total_bytes

        log_dir = self._log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = write_run_log(
            log_dir,
            self.settings.generated_file_name,
            self.settings,
            self.stats,
            status=status,
            message=message,
        )
        result = result.model_copy(update={"log_path": log_path})

        final = self.plugins.after_run(result, self.settings)
        try:
            return _RESULT_ADAPTER.validate_python(final)
        except ValidationError:
            logger.warning("plugin_result_ignored", hook="after_run")
            return result

    def run(self) -> RunResult:
        started = time.perf_counter()
        logger.info("run_started", root=self.root.name, formats=self.settings.enabled_suffixes)
        try:
            result = self.execute()
        except _Abort as abort:
            result = abort.failure
            logger.warning("run_failed", code=result.code, message=result.message)
        else:
            logger.info("run_succeeded", processed=result.files_processed, skipped=result.files_skipped)
        return self.finish(result, started)


def run_fusion(
    settings: Settings,
    *,
    plugins: PluginManager | Sequence[Plugin] | None = None,
    should_cancel: CancelFn | None = None,
) -> RunResult:
    """Run one fusion pass over `settings.root`.

    Args:
        settings (Settings): the run configuration
        plugins (PluginManager | Sequence[Plugin] | None): already loaded plugins
        should_cancel (CancelFn | None): polled between files; True cancels the run

    Returns:
        RunResult: a `RunSuccess`, or one of the typed failures carrying a code and a hint
    """
    if not settings.root.is_dir():
        logger.warning("run_failed", code="ROOT_NOT_FOUND")
        return RootNotFoundFailure(message="The root directory does not exist.")
    manager = plugins if isinstance(plugins, PluginManager) else PluginManager(plugins or ())
    return FusionRun(settings, plugins=manager, should_cancel=should_cancel).run()
