from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from repo_fusion.config import DEFAULT_IGNORE_PATTERNS

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "REPO_FUSION_"


class Settings(BaseModel):
    """Configuration settings for one fusion run (limits, flags and outputs)."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    root: Path = Field(default_factory=Path.cwd, description="Root directory; the security boundary.")
    extension_groups: list[str] = Field(
        default_factory=list,
        description="Extension groups to include; empty or ['all'] means every group.",
    )
    extra_extension_groups: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Additional groups merged with the built-in ones.",
    )
    parse_subdirectories: bool = Field(default=True, description="Recurse into subdirectories.")
    use_gitignore: bool = Field(default=True, description="Apply the root .gitignore.")
    ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS),
        description="Gitignore-style patterns to exclude.",
    )

    generated_file_name: str = Field(default="project-fusioned", description="Base name of the artifacts.")
    output_dir: Path | None = Field(default=None, description="Artifact directory (inside root); root if unset.")
    generate_text: bool = Field(default=True, description="Write the .txt artifact.")
    generate_markdown: bool = Field(default=True, description="Write the .md artifact.")
    generate_html: bool = Field(default=True, description="Write the .html artifact.")
    log_file: str = Field(default="", description="Diagnostic (structlog) log file path.")

    max_file_size_kb: int = Field(default=1024, ge=1, description="Per-file size ceiling.")
    max_files: int = Field(default=10_000, ge=1, description="File count ceiling.")
    max_total_size_mb: float = Field(default=100, gt=0, description="Aggregate size ceiling.")
    max_base64_block_kb: int = Field(default=75, ge=0, description="Largest base64 block (0 disables).")
    max_line_length: int = Field(default=5000, ge=0, description="Longest line (0 disables).")
    max_token_length: int = Field(default=2000, ge=0, description="Longest token (0 disables).")
    max_symlink_audit_entries: int = Field(default=10, ge=0, description="Symlink audit entries kept.")
    allow_symlinks: bool = Field(default=False, description="Follow symbolic links inside root.")
    exclude_secrets: bool = Field(default=True, description="Detect and redact secrets.")

    @field_validator("generated_file_name")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name or "\\" in name or name in {".", ".."}:
            msg = "generated_file_name must be a plain file name"
            raise ValueError(msg)
        return name

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_kb * 1024

    @property
    def max_total_size_bytes(self) -> int:
        return int(self.max_total_size_mb * 1024 * 1024)

    @property
    def artifact_dir(self) -> Path:
        """Directory the artifacts and the run log are written to."""
        if self.output_dir is None:
            return self.root
        return self.output_dir if self.output_dir.is_absolute() else self.root / self.output_dir

    @property
    def enabled_suffixes(self) -> list[str]:
        flags = [(".txt", self.generate_text), (".md", self.generate_markdown), (".html", self.generate_html)]
        return [suffix for suffix, enabled in flags if enabled]

    @classmethod
    def from_env(cls, **overrides: Any) -> Settings:  # noqa: ANN401
        """Build settings from ``REPO_FUSION_*`` variables, then explicit overrides.

        Values come from the nearest ``.env`` file first, then from the process
        environment, so the environment wins over the file. List fields accept
        comma separated values.

        Args:
            **overrides: explicit field values, applied last.

        Returns:
            Settings: the validated settings.
        """
        raw: dict[str, Any] = {}
        sources = [dotenv_values(ENV_FILE) if ENV_FILE else {}, os.environ]
        for source in sources:
            for key, value in source.items():
                if not key.startswith(ENV_PREFIX) or value is None:
                    continue
                field = key.removeprefix(ENV_PREFIX).lower()
                if field not in cls.model_fields:
                    continue
                raw[field] = _split_list(value) if field in {"extension_groups", "ignore_patterns"} else value
        raw.update(overrides)
        return cls.model_validate(raw)


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]
