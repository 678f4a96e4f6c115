from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from repo_fusion.exceptions import RunCancelledError
from repo_fusion.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from repo_fusion.config import FileRecord
    from repo_fusion.settings import Settings

    AfterFileFn = Callable[[FileRecord, str], str]
    CancelFn = Callable[[], bool]

DOCUMENT_TITLE = "Generated Project Fusion File"
BANNER = "<!-- ============================================================ -->"

HTML_ESCAPES: dict[str, str] = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
    "/": "&#47;",
    "=": "&#61;",
    "(": "&#40;",
    ")": "&#41;",
}
_HTML_TABLE = str.maketrans(HTML_ESCAPES)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_BACKTICK_RUN = re.compile(r"`+")


def escape_html(text: str) -> str:
    """Escape text for embedding in HTML element content or attribute values.

    Args:
        text (str): untrusted text (a path or file content)

    Returns:
        str: the escaped text
    """
    return text.translate(_HTML_TABLE)


def slugify(path: str) -> str:
    """Derive an anchor slug: lower-cased, runs of non-alphanumerics become one hyphen."""
    return _NON_ALNUM.sub("-", path.lower()).strip("-") or "file"


class AnchorRegistry:
    """Hands out unique anchors within one document.

    A slug already issued gets a ``-1``, ``-2``, ... suffix.
    """

    def __init__(self) -> None:
        self._issued: set[str] = set()

    def anchor(self, path: str) -> str:
        base = slugify(path)
        candidate, n = base, 0
        while candidate in self._issued:
            n += 1
            candidate = f"{base}-{n}"
        self._issued.add(candidate)
        return candidate

    def assign(self, paths: Sequence[str]) -> list[str]:
        return [self.anchor(p) for p in paths]


def fence_for(content: str) -> str:
    """Return a backtick fence longer than any backtick run in `content`."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(content)), default=0)
    return "`" * max(3, longest + 1)


def _with_newline(text: str) -> str:
    return text if text.endswith("\n") else f"{text}\n"


class RenderContext(BaseModel):
    """Run metadata shared by every generator. Holds no timestamp."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Project name shown in the document header")
    file_count: int = Field(default=0, ge=0)
    total_bytes: int = Field(default=0, ge=0)

    @classmethod
    def from_records(cls, title: str, records: Sequence[FileRecord]) -> RenderContext:
        return cls(title=title, file_count=len(records), total_bytes=sum(r.byte_size for r in records))


class OutputGenerator(ABC):
    """One artifact format.

    Subclasses render a header, one section per record and a footer;
    `generate` streams them to a temporary file that is renamed into place
    once complete.
    """

    name: ClassVar[str]
    suffix: ClassVar[str]

    def destination_for(self, directory: Path, base_name: str) -> Path:
        return directory / f"{base_name}{self.suffix}"

    def header(self, records: Sequence[FileRecord], anchors: Sequence[str], context: RenderContext) -> str:  # noqa: ARG002
        return ""

    @abstractmethod
    def render_file(self, record: FileRecord, anchor: str) -> str:
        """Render the section for a single file."""

    def footer(self, context: RenderContext) -> str:  # noqa: ARG002
        return ""

    def generate(
        self,
        records: Sequence[FileRecord],
        context: RenderContext,
        destination: Path,
        *,
        after_file: AfterFileFn | None = None,
        should_cancel: CancelFn | None = None,
    ) -> Path:
        """Stream `records` to `destination`.

        Args:
            records (Sequence[FileRecord]): the accepted files, in output order
            context (RenderContext): shared run metadata
            destination (Path): final artifact path
            after_file (AfterFileFn | None): transform applied to each rendered section
            should_cancel (CancelFn | None): polled before each file

        Raises:
            RunCancelledError: if `should_cancel` returned True; nothing is left on disk.

        Returns:
            Path: the written artifact
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        anchors = AnchorRegistry().assign([r.relative_path for r in records])
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as out:
                out.write(self.header(records, anchors, context))
                for record, anchor in zip(records, anchors, strict=True):
                    if should_cancel is not None and should_cancel():
                        raise RunCancelledError
                    rendered = self.render_file(record, anchor)
                    if after_file is not None:
                        rendered = after_file(record, rendered)
                    out.write(rendered)
                out.write(self.footer(context))
            tmp.replace(destination)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.info("artifact_written", format=self.name, artifact=destination.name, files=len(records))
        return destination


class TextGenerator(OutputGenerator):
    name = "txt"
    suffix = ".txt"

    def header(self, records: Sequence[FileRecord], anchors: Sequence[str], context: RenderContext) -> str:  # noqa: ARG002
        return f"# {DOCUMENT_TITLE}\n# Project: {context.title}\n# Files: {context.file_count}\n\n"

    def render_file(self, record: FileRecord, anchor: str) -> str:  # noqa: ARG002
        return f"{BANNER}\n<!-- FILE: {record.relative_path:<54} -->\n{BANNER}\n{_with_newline(record.content)}\n"


class MarkdownGenerator(OutputGenerator):
    name = "md"
    suffix = ".md"

    @staticmethod
    def _link_text(path: str) -> str:
        return path.replace("[", r"\[").replace("]", r"\]")

    def header(self, records: Sequence[FileRecord], anchors: Sequence[str], context: RenderContext) -> str:
        lines = [
            f"# {DOCUMENT_TITLE}",
            "",
            f"**Project:** {context.title}",
            "",
            f"**Files:** {context.file_count}",
            "",
            "---",
            "",
            "## Table of Contents",
            "",
        ]
        lines.extend(f"- [{self._link_text(r.relative_path)}](#{a})" for r, a in zip(records, anchors, strict=True))
        lines.extend(["", "---", "", ""])
        return "\n".join(lines)

    def render_file(self, record: FileRecord, anchor: str) -> str:
        fence = fence_for(record.content)
        return (
            f'<a id="{anchor}"></a>\n\n'
            f"## {record.relative_path}\n\n"
            f"{fence}{record.language}\n"
            f"{_with_newline(record.content)}"
            f"{fence}\n\n"
        )


class HtmlGenerator(OutputGenerator):
    name = "html"
    suffix = ".html"

    def header(self, records: Sequence[FileRecord], anchors: Sequence[str], context: RenderContext) -> str:
        title = escape_html(context.title)
        toc = "\n".join(
            f'<li><a href="#{a}">{escape_html(r.relative_path)}</a></li>' for r, a in zip(records, anchors, strict=True)
        )
        return (
            "<!DOCTYPE html>\n"
            '<html lang="en">\n'
            "<head>\n"
            '<meta charset="utf-8">\n'
            f"<title>{DOCUMENT_TITLE} - {title}</title>\n"
            "<style>body{font-family:sans-serif;margin:2em}pre{background:#f6f8fa;padding:1em;overflow:auto}</style>\n"
            "</head>\n"
            "<body>\n"
            f"<h1>{DOCUMENT_TITLE}</h1>\n"
            f"<p><strong>Project:</strong> {title}</p>\n"
            f"<p><strong>Files:</strong> {context.file_count}</p>\n"
            "<nav>\n<h2>Table of Contents</h2>\n<ul>\n"
            f"{toc}\n"
            "</ul>\n</nav>\n"
        )

    def render_file(self, record: FileRecord, anchor: str) -> str:
        return (
            f'<section id="{anchor}">\n'
            f"<h2>{escape_html(record.relative_path)}</h2>\n"
            f'<pre><code class="language-{escape_html(record.language)}">'
            f"{escape_html(record.content)}</code></pre>\n"
            "</section>\n"
        )

    def footer(self, context: RenderContext) -> str:  # noqa: ARG002
        return "</body>\n</html>\n"


BUILTIN_GENERATORS: dict[str, type[OutputGenerator]] = {
    ".txt": TextGenerator,
    ".md": MarkdownGenerator,
    ".html": HtmlGenerator,
}


def builtin_generators(settings: Settings) -> list[OutputGenerator]:
    """Instantiate the built-in generators enabled in `settings`."""
    return [BUILTIN_GENERATORS[suffix]() for suffix in settings.enabled_suffixes]
