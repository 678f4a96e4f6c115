from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar


@dataclass(frozen=True)
class RepoFusionError(Exception):
    """Base exception for errors in the repo_fusion package."""

    code: ClassVar[str] = "FUSION_ERROR"

    def __str__(self) -> str:
        return str(getattr(self, "message", self.__class__.__doc__ or self.code))


@dataclass(frozen=True)
class PathTraversalError(RepoFusionError):
    """Raised when a path resolves outside the configured root."""

    code: ClassVar[str] = "PATH_TRAVERSAL"

    path: Path
    root: Path
    message: str = "Path resolves outside the root directory."


@dataclass(frozen=True)
class SymlinkNotAllowedError(RepoFusionError):
    """Raised when a symbolic link is met while symlinks are disabled."""

    code: ClassVar[str] = "SYMLINK_NOT_ALLOWED"

    path: Path
    message: str = "Symbolic links are not allowed (enable allow_symlinks to follow them)."


@dataclass(frozen=True)
class ResourceLimitError(RepoFusionError):
    """Base class for resource ledger ceiling violations."""

    code: ClassVar[str] = "RESOURCE_LIMIT"


@dataclass(frozen=True)
class FileTooLargeError(ResourceLimitError):
    """Raised when a single file exceeds the per-file size ceiling."""

    code: ClassVar[str] = "FILE_TOO_LARGE"

    size_bytes: int
    limit_bytes: int

    def __str__(self) -> str:
        return f"file size {self.size_bytes / 1024:.2f} KB > {self.limit_bytes / 1024:.0f} KB"


@dataclass(frozen=True)
class TooManyFilesError(ResourceLimitError):
    """Raised when accepting another file would exceed the file count ceiling."""

    code: ClassVar[str] = "TOO_MANY_FILES"

    count: int
    limit: int

    def __str__(self) -> str:
        return f"Too many files found ({self.count} > {self.limit})"


@dataclass(frozen=True)
class SizeLimitExceededError(ResourceLimitError):
    """Raised when accepting a file would exceed the aggregate size ceiling."""

    code: ClassVar[str] = "SIZE_LIMIT_EXCEEDED"

    total_bytes: int
    limit_bytes: int

    def __str__(self) -> str:
        return (
            f"Total size limit exceeded ({self.total_bytes / (1024 * 1024):.2f} MB "
            f"> {self.limit_bytes / (1024 * 1024):.0f} MB)"
        )


@dataclass(frozen=True)
class PluginHookError(RepoFusionError):
    """Raised when a plugin returns a value of the wrong shape from a hook."""

    code: ClassVar[str] = "PLUGIN_HOOK"

    plugin: str
    hook: str
    message: str = "Plugin hook returned an invalid value."


@dataclass(frozen=True)
class RunCancelledError(RepoFusionError):
    """Raised when the caller asks for cancellation between two files."""

    code: ClassVar[str] = "CANCELLED"

    message: str = "Run cancelled by the caller."
