from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from repo_fusion import cli
from repo_fusion import settings as settings_module


@pytest.mark.end2end
def test_end_to_end_fusion(tmp_path: Path, mocker: MockerFixture) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")
    root = tmp_path / "shop"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    (root / "src" / "settings.py").write_text('api_key = "abcdef0123456789abcdef"\n', encoding="utf-8")
    (root / "README.md").write_text("# Shop\n", encoding="utf-8")
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "node_modules" / "dep" / "index.js").write_text("module.exports = 1;\n", encoding="utf-8")
    debug_log = tmp_path / "debug.log"

    exit_code = cli.main([
        "--root",
        str(root),
        "--groups",
        "backend,doc,web",
        "--output-dir",
        "docs",
        "--log-file",
        str(debug_log),
    ])

    assert exit_code == 0
    out_dir = root / "docs"
    markdown = (out_dir / "project-fusioned.md").read_text(encoding="utf-8")
    assert "## src/app.py" in markdown
    assert "## README.md" in markdown
    assert "node_modules" not in markdown
    assert "abcdef0123456789abcdef" not in markdown
    assert (out_dir / "project-fusioned.txt").is_file()
    assert (out_dir / "project-fusioned.html").is_file()
    run_log = (out_dir / "project-fusioned.log").read_text(encoding="utf-8")
    assert "Generic API Key: 1 occurrence(s)" in run_log
    assert "Files processed: 3" in run_log
    assert debug_log.is_file()


@pytest.mark.end2end
def test_end_to_end_failure(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")

    exit_code = cli.main(["--root", str(tmp_path / "missing")])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "ROOT_NOT_FOUND" in err
    assert "Hint:" in err
