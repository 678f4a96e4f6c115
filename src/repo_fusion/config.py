from __future__ import annotations

from datetime import datetime
from enum import StrEnum, auto
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TargetKind(StrEnum):
    """What a symbolic link points at once resolved."""

    FILE = auto()
    DIR = auto()
    MISSING = auto()


EXTENSION_GROUPS: dict[str, list[str]] = {
    "backend": [".cs", ".go", ".java", ".php", ".py", ".rb", ".rs"],
    "config": [".cfg", ".json", ".toml", ".xml", ".yaml", ".yml"],
    "cpp": [".c", ".cc", ".cpp", ".h", ".hpp"],
    "doc": [".adoc", ".md", ".rst"],
    "godot": [".gd", ".import", ".tres", ".tscn"],
    "scripts": [".bat", ".cmd", ".ps1", ".sh"],
    "web": [".css", ".html", ".js", ".jsx", ".svelte", ".ts", ".tsx", ".vue"],
}

EXT2LANG: dict[str, str] = {
    ".adoc": "asciidoc",
    ".bash": "bash",
    ".bat": "batch",
    ".c": "c",
    ".cc": "cpp",
    ".cfg": "ini",
    ".cmake": "cmake",
    ".cmd": "batch",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".css": "css",
    ".cxx": "cpp",
    ".env": "bash",
    ".fish": "bash",
    ".gd": "gdscript",
    ".go": "go",
    ".gql": "graphql",
    ".gradle": "gradle",
    ".graphql": "graphql",
    ".h": "c",
    ".hpp": "cpp",
    ".hxx": "cpp",
    ".html": "html",
    ".import": "ini",
    ".ini": "ini",
    ".java": "java",
    ".js": "javascript",
    ".json": "json",
    ".jsx": "jsx",
    ".kt": "kotlin",
    ".less": "less",
    ".lua": "lua",
    ".md": "markdown",
    ".mdx": "markdown",
    ".php": "php",
    ".pl": "perl",
    ".proto": "protobuf",
    ".ps1": "powershell",
    ".py": "python",
    ".r": "r",
    ".rb": "ruby",
    ".rs": "rust",
    ".rst": "rst",
    ".sass": "sass",
    ".scala": "scala",
    ".scss": "scss",
    ".sh": "bash",
    ".sql": "sql",
    ".svelte": "svelte",
    ".swift": "swift",
    ".tex": "latex",
    ".toml": "toml",
    ".tres": "gdscript",
    ".ts": "typescript",
    ".tscn": "gdscript",
    ".tsx": "tsx",
    ".vue": "vue",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".zsh": "bash",
}

BASENAME2LANG: dict[str, str] = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "cmakelists.txt": "cmake",
    "gemfile": "ruby",
    "rakefile": "ruby",
}

DEFAULT_LANGUAGE = "text"

DEFAULT_IGNORE_PATTERNS: list[str] = [
    "node_modules/",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "dist/",
    "build/",
    "__pycache__/",
    ".venv/",
    "*.min.js",
    "*.min.css",
    ".env",
    ".env.*",
    "*.key",
    "*.pem",
    "**/credentials/*",
    "**/secrets/*",
    "*.log",
    "logs/",
    ".DS_Store",
    "Thumbs.db",
    ".vscode/",
    ".idea/",
    "*.swp",
    "*.swo",
]

GENERATED_SUFFIXES: tuple[str, ...] = (".txt", ".md", ".html", ".log")


def language_for(path: str | Path) -> str:
    """Return the code fence / highlighting tag for a file.

    Basenames such as ``Dockerfile`` win over extensions; unknown files
    fall back to ``"text"``.

    Args:
        path (str | Path): the file path (relative or absolute)

    Returns:
        str: the language tag
    """
    p = Path(path)
    by_name = BASENAME2LANG.get(p.name.lower())
    if by_name:
        return by_name
    return EXT2LANG.get(p.suffix.lower(), DEFAULT_LANGUAGE)


class CandidateFile(BaseModel):
    """A discovered path, before any security or content validation."""

    model_config = ConfigDict(frozen=True)

    absolute_path: Path = Field(..., description="Path as found by the walk (not resolved)")
    relative_path: str = Field(..., description="POSIX path relative to the root")


class BinaryContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["binary_content"] = "binary_content"

    def describe(self) -> str:
        return "binary content detected"


class OversizedBase64Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["oversized_base64_block"] = "oversized_base64_block"
    size_kb: float
    limit_kb: int = 0

    def describe(self) -> str:
        return f"base64 block {self.size_kb:.2f} KB > {self.limit_kb} KB"


class OversizedLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["oversized_line"] = "oversized_line"
    length: int
    limit: int = 0

    def describe(self) -> str:
        return f"line length {self.length} > {self.limit}"


class OversizedToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["oversized_token"] = "oversized_token"
    length: int
    limit: int = 0

    def describe(self) -> str:
        return f"token length {self.length} > {self.limit} (possible minified content)"


class SecretFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["secret_found"] = "secret_found"
    categories: tuple[str, ...]

    def describe(self) -> str:
        return f"secrets redacted: {', '.join(self.categories)}"


class MinifiedContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["minified_content"] = "minified_content"

    def describe(self) -> str:
        return "minified content detected"


DetectedIssue = Annotated[
    BinaryContent | OversizedBase64Block | OversizedLine | OversizedToken | SecretFound | MinifiedContent,
    Field(discriminator="kind"),
]

FATAL_ISSUE_KINDS = frozenset({"binary_content", "oversized_base64_block", "oversized_line", "oversized_token"})


def is_fatal(issue: DetectedIssue) -> bool:
    """Tell whether an issue excludes the file from the output."""
    return issue.kind in FATAL_ISSUE_KINDS


class FileRecord(BaseModel):
    """A validated, content-loaded file ready for rendering.

    Attributes:
        relative_path: POSIX path relative to the root.
        absolute_path: Canonical absolute path of the file on disk.
        byte_size: Size on disk in bytes (before redaction).
        content: Decoded (and possibly redacted) text.
        issues: Advisory issues found during inspection.
    """

    model_config = ConfigDict(frozen=True)

    relative_path: str = Field(..., description="File path relative to the root")
    absolute_path: Path = Field(..., description="Canonical absolute file path")
    byte_size: int = Field(..., ge=0, description="File size in bytes")
    content: str = Field(default="", description="Decoded text content")
    issues: tuple[DetectedIssue, ...] = Field(default=(), description="Advisory issues")

    @computed_field
    @property
    def language(self) -> str:
        """Language tag derived from the file name."""
        return language_for(self.relative_path)

    @property
    def secret_categories(self) -> tuple[str, ...]:
        for issue in self.issues:
            if isinstance(issue, SecretFound):
                return issue.categories
        return ()

    @property
    def is_minified(self) -> bool:
        return any(isinstance(issue, MinifiedContent) for issue in self.issues)


class SymlinkAuditEntry(BaseModel):
    """A followed symbolic link and where it led."""

    model_config = ConfigDict(frozen=True)

    symlink_path: str
    resolved_target_path: str
    target_kind: TargetKind
    timestamp: datetime


class SkippedFile(BaseModel):
    """A candidate rejected for a file-local reason."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    code: str
    reason: str
