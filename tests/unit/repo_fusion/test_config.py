from pathlib import Path

import pytest
from pydantic import TypeAdapter

from repo_fusion.config import (
    BinaryContent,
    DetectedIssue,
    FileRecord,
    MinifiedContent,
    OversizedLine,
    SecretFound,
    is_fatal,
    language_for,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("src/app.py", "python"),
        ("Dockerfile", "dockerfile"),
        ("build/CMakeLists.txt", "cmake"),
        ("web/App.TSX", "tsx"),
        ("notes.unknown", "text"),
        ("LICENSE", "text"),
    ],
)
def test_language_for(path: str, expected: str) -> None:
    assert language_for(path) == expected


@pytest.mark.unit
def test_detected_issue_is_a_discriminated_union() -> None:
    adapter = TypeAdapter(DetectedIssue)

    issue = adapter.validate_python({"kind": "oversized_line", "length": 6000, "limit": 5000})

    assert isinstance(issue, OversizedLine)
    assert adapter.validate_python({"kind": "binary_content"}) == BinaryContent()


@pytest.mark.unit
def test_fatal_and_advisory_issues() -> None:
    assert is_fatal(BinaryContent())
    assert is_fatal(OversizedLine(length=10, limit=5))
    assert not is_fatal(MinifiedContent())
    assert not is_fatal(SecretFound(categories=("JWT Token",)))


@pytest.mark.unit
def test_file_record_derives_language_and_advisories() -> None:
    record = FileRecord(
        relative_path="pkg/mod.py",
        absolute_path=Path("/tmp/pkg/mod.py"),  # noqa: S108
        byte_size=12,
        content="x = 1\n",
        issues=(SecretFound(categories=("AWS Access Key",)), MinifiedContent()),
    )

    assert record.language == "python"
    assert record.secret_categories == ("AWS Access Key",)
    assert record.is_minified
