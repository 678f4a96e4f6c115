from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

TreeFactory = Callable[[Mapping[str, str | bytes]], Path]


@pytest.fixture
def make_tree(tmp_path: Path) -> TreeFactory:
    """Write a mapping of relative path -> content under a fresh root and return the root."""
    root = tmp_path / "project"
    root.mkdir()

    def _make(files: Mapping[str, str | bytes]) -> Path:
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return _make
