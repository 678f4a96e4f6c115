from __future__ import annotations

import re
import statistics
from collections import OrderedDict
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from repo_fusion.config import (
    BinaryContent,
    DetectedIssue,
    MinifiedContent,
    OversizedBase64Block,
    OversizedLine,
    OversizedToken,
)

if TYPE_CHECKING:
    from repo_fusion.settings import Settings

DEFAULT_SAMPLE_SIZE = 1024
BINARY_RATIO_THRESHOLD = 0.30
ALLOWED_CONTROL_BYTES = frozenset({0x09, 0x0A, 0x0D})

MINIFIED_MEAN_LINE = 250
MINIFIED_LONG_LINE = 1000
MINIFIED_LONG_LINE_SHARE = 0.20
MINIFIED_MAX_LINE = 5000
MINIFIED_HARD_MEAN = 300

BASE64_RUN = re.compile(r"[A-Za-z0-9+/]{100,}={0,2}")
BASE64_TOKEN_SHARE = 0.95
_BASE64_ALPHABET = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=")
_BASE64_ENDING = re.compile(r"[A-Za-z0-9+/]={0,2}$")
_MIN_MARKER = re.compile(r"[.\-_]min\.", re.IGNORECASE)
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


class InspectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_binary: bool
    issues: tuple[DetectedIssue, ...] = ()


class ContentLimits(BaseModel):
    """Ceilings for the oversized-content checks; 0 disables a check."""

    model_config = ConfigDict(frozen=True)

    max_base64_block_kb: int = Field(default=75, ge=0)
    max_line_length: int = Field(default=5000, ge=0)
    max_token_length: int = Field(default=2000, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> ContentLimits:
        return cls(
            max_base64_block_kb=settings.max_base64_block_kb,
            max_line_length=settings.max_line_length,
            max_token_length=settings.max_token_length,
        )


def is_binary_sample(data: bytes, sample_size: int = DEFAULT_SAMPLE_SIZE) -> bool:
    """Classify a byte buffer as binary from its first `sample_size` bytes.

    Any NUL byte is conclusive. Otherwise the share of control bytes (tab,
    newline and carriage return excepted) and bytes above 126 must not
    exceed 30% of the sample.

    Args:
        data (bytes): the file content, or its head
        sample_size (int): number of leading bytes to look at

    Returns:
        bool: True if the buffer looks binary
    """
    sample = data[:sample_size]
    if not sample:
        return False
    if 0 in sample:
        return True
    suspicious = sum(1 for b in sample if (b < 0x20 and b not in ALLOWED_CONTROL_BYTES) or b > 0x7E)
    return suspicious / len(sample) > BINARY_RATIO_THRESHOLD


def inspect(data: bytes, sample_size: int = DEFAULT_SAMPLE_SIZE) -> InspectionResult:
    if is_binary_sample(data, sample_size):
        return InspectionResult(is_binary=True, issues=(BinaryContent(),))
    return InspectionResult(is_binary=False)


class BinaryCache:
    """Bounded per-run cache of binary verdicts keyed by absolute path.

    Oldest entries are evicted first once `max_entries` is exceeded.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max(1, max_entries)
        self._verdicts: OrderedDict[str, bool] = OrderedDict()

    def __len__(self) -> int:
        return len(self._verdicts)

    def __contains__(self, path: object) -> bool:
        return str(path) in self._verdicts

    def get(self, path: Path) -> bool | None:
        return self._verdicts.get(str(path))

    def put(self, path: Path, verdict: bool) -> None:  # noqa: FBT001
        key = str(path)
        self._verdicts[key] = verdict
        self._verdicts.move_to_end(key)
        while len(self._verdicts) > self.max_entries:
            self._verdicts.popitem(last=False)

    def is_binary(self, path: Path, data: bytes, sample_size: int = DEFAULT_SAMPLE_SIZE) -> bool:
        cached = self.get(path)
        if cached is not None:
            return cached
        verdict = is_binary_sample(data, sample_size)
        self.put(path, verdict)
        return verdict


def split_lines(text: str) -> list[str]:
    return _LINE_SPLIT.split(text)


def is_minified(text: str, filename: str | Path = "") -> bool:
    """Heuristically decide whether text is minified.

    Args:
        text (str): decoded file content
        filename (str | Path): file name, checked for a ``.min.`` marker first

    Returns:
        bool: True if the content looks minified
    """
    if filename and _MIN_MARKER.search(Path(filename).name):
        return True
    lengths = [len(line) for line in split_lines(text) if line.strip()]
    if not lengths:
        return False
    if max(lengths) > MINIFIED_MAX_LINE:
        return True
    mean = statistics.fmean(lengths)
    long_share = sum(1 for n in lengths if n > MINIFIED_LONG_LINE) / len(lengths)
    return (mean > MINIFIED_MEAN_LINE and long_share > MINIFIED_LONG_LINE_SHARE) or mean > MINIFIED_HARD_MEAN


def is_high_confidence_base64(token: str) -> bool:
    """Tell whether a token is almost certainly a base64 payload.

    Such tokens are left to the base64 block check so they are not counted
    twice.
    """
    if not token or "_" in token or len(token) % 4:
        return False
    in_alphabet = sum(1 for ch in token if ch in _BASE64_ALPHABET)
    if in_alphabet / len(token) < BASE64_TOKEN_SHARE:
        return False
    return _BASE64_ENDING.search(token) is not None


def largest_base64_block_kb(text: str) -> float:
    largest = 0
    for match in BASE64_RUN.finditer(text):
        largest = max(largest, len(match.group(0)))
    return largest * 3 / 4 / 1024


def check_oversized(text: str, limits: ContentLimits) -> list[DetectedIssue]:
    """Run the base64 / line / token ceilings over decoded text.

    Args:
        text (str): decoded file content
        limits (ContentLimits): the ceilings to enforce

    Returns:
        list[DetectedIssue]: one issue per exceeded ceiling, in check order
    """
    issues: list[DetectedIssue] = []

    if limits.max_base64_block_kb:
        size_kb = largest_base64_block_kb(text)
        if size_kb > limits.max_base64_block_kb:
            issues.append(OversizedBase64Block(size_kb=size_kb, limit_kb=limits.max_base64_block_kb))

    if limits.max_line_length:
        longest = max((len(line) for line in split_lines(text)), default=0)
        if longest > limits.max_line_length:
            issues.append(OversizedLine(length=longest, limit=limits.max_line_length))

    if limits.max_token_length:
        longest_token = 0
        for token in text.split():
            if len(token) > limits.max_token_length and not is_high_confidence_base64(token):
                longest_token = max(longest_token, len(token))
        if longest_token:
            issues.append(OversizedToken(length=longest_token, limit=limits.max_token_length))

    return issues


class ContentInspector:
    """Content checks bound to one run's limits and binary cache."""

    def __init__(
        self,
        limits: ContentLimits,
        *,
        cache: BinaryCache | None = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> None:
        self.limits = limits
        self.cache = cache if cache is not None else BinaryCache()
        self.sample_size = sample_size

    def inspect_bytes(self, path: Path, data: bytes) -> InspectionResult:
        if self.cache.is_binary(path, data, self.sample_size):
            return InspectionResult(is_binary=True, issues=(BinaryContent(),))
        return InspectionResult(is_binary=False)

    def inspect_text(self, text: str, filename: str | Path = "") -> list[DetectedIssue]:
        """Return the oversized issues (fatal) followed by the minified tag (advisory)."""
        issues = check_oversized(text, self.limits)
        if is_minified(text, filename):
            issues.append(MinifiedContent())
        return issues
