from pathlib import Path

import pytest

from repo_fusion.config import TargetKind
from repo_fusion.exceptions import PathTraversalError, SymlinkNotAllowedError
from repo_fusion.security import SymlinkAuditor, classify_target, is_inside, validate_path


@pytest.mark.unit
def test_validate_path_accepts_nested_paths(tmp_path: Path) -> None:
    nested = tmp_path / "a" / "b" / "c.py"
    nested.parent.mkdir(parents=True)
    nested.write_text("x = 1\n", encoding="utf-8")

    assert validate_path(nested, tmp_path) == nested.resolve()
    assert validate_path(tmp_path, tmp_path) == tmp_path.resolve()


@pytest.mark.unit
def test_validate_path_rejects_parent_segments(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()

    with pytest.raises(PathTraversalError) as exc_info:
        validate_path(root / "sub" / ".." / ".." / "escape.txt", root)

    assert exc_info.value.code == "PATH_TRAVERSAL"
    assert exc_info.value.root == root.resolve()


@pytest.mark.unit
def test_validate_path_does_not_accept_sibling_with_common_prefix(tmp_path: Path) -> None:
    root = tmp_path / "app"
    sibling = tmp_path / "application" / "x.py"
    root.mkdir()
    sibling.parent.mkdir()
    sibling.write_text("", encoding="utf-8")

    assert not is_inside(sibling, root)


@pytest.mark.unit
def test_validate_path_follows_symlinks_before_comparing(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "secret.txt"
    outside.write_text("top secret", encoding="utf-8")
    link = root / "link.txt"
    link.symlink_to(outside)

    with pytest.raises(PathTraversalError):
        validate_path(link, root)


@pytest.mark.unit
def test_classify_target(tmp_path: Path) -> None:
    f = tmp_path / "f.txt"
    f.write_text("", encoding="utf-8")

    assert classify_target(f) == TargetKind.FILE
    assert classify_target(tmp_path) == TargetKind.DIR
    assert classify_target(tmp_path / "missing") == TargetKind.MISSING


@pytest.mark.unit
def test_auditor_ignores_regular_files(tmp_path: Path) -> None:
    f = tmp_path / "f.py"
    f.write_text("", encoding="utf-8")
    auditor = SymlinkAuditor(tmp_path, allow_symlinks=False, max_entries=3)

    assert auditor.audit(f) is False
    assert auditor.entries == []


@pytest.mark.unit
def test_auditor_rejects_links_when_disabled(tmp_path: Path) -> None:
    target = tmp_path / "f.py"
    target.write_text("", encoding="utf-8")
    link = tmp_path / "l.py"
    link.symlink_to(target)
    auditor = SymlinkAuditor(tmp_path, allow_symlinks=False, max_entries=3)

    with pytest.raises(SymlinkNotAllowedError):
        auditor.audit(link)


@pytest.mark.unit
def test_auditor_caps_recorded_entries(tmp_path: Path) -> None:
    target = tmp_path / "f.py"
    target.write_text("", encoding="utf-8")
    links = []
    for i in range(5):
        link = tmp_path / f"l{i}.py"
        link.symlink_to(target)
        links.append(link)
    auditor = SymlinkAuditor(tmp_path, allow_symlinks=True, max_entries=3)

    assert all(auditor.audit(link) for link in links)
    assert len(auditor.entries) == 3
    assert auditor.seen == 5
    assert auditor.limit_reached is True
    assert auditor.entries[0].symlink_path == "l0.py"
    assert auditor.entries[0].resolved_target_path == "f.py"


@pytest.mark.unit
def test_auditor_records_broken_links(tmp_path: Path) -> None:
    link = tmp_path / "dangling.py"
    link.symlink_to(tmp_path / "gone.py")
    auditor = SymlinkAuditor(tmp_path, allow_symlinks=True, max_entries=10)

    assert auditor.audit(link) is True
    assert auditor.entries[0].target_kind == TargetKind.MISSING
