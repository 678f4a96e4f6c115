from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from repo_fusion import cli
from repo_fusion import settings as settings_module
from repo_fusion.config import DEFAULT_IGNORE_PATTERNS
from repo_fusion.pipeline import NoFilesFoundFailure, RunSuccess


@pytest.fixture(autouse=True)
def _no_dotenv(mocker: MockerFixture) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")


@pytest.mark.integration
def test_parse_args_maps_flags_to_settings(tmp_path: Path) -> None:
    settings = cli.parse_args([
        "--root",
        str(tmp_path),
        "--groups",
        "backend, doc",
        "--no-gitignore",
        "--no-subdirs",
        "--allow-symlinks",
        "--keep-secrets",
        "--formats",
        "md",
        "--name",
        "snapshot",
        "--output-dir",
        "out",
        "--max-files",
        "12",
        "--max-total-size-mb",
        "0.5",
        "--max-line-length",
        "0",
    ])

    assert settings.root == tmp_path
    assert settings.extension_groups == ["backend", "doc"]
    assert settings.use_gitignore is False
    assert settings.parse_subdirectories is False
    assert settings.allow_symlinks is True
    assert settings.exclude_secrets is False
    assert settings.enabled_suffixes == [".md"]
    assert settings.generated_file_name == "snapshot"
    assert settings.artifact_dir == tmp_path / "out"
    assert settings.max_files == 12
    assert settings.max_total_size_mb == 0.5
    assert settings.max_line_length == 0


@pytest.mark.integration
def test_ignore_patterns_extend_the_defaults() -> None:
    settings = cli.parse_args(["--ignore", "tests/", "--ignore", "*.gen.py"])

    assert settings.ignore_patterns == [*DEFAULT_IGNORE_PATTERNS, "tests/", "*.gen.py"]


@pytest.mark.integration
def test_groups_file_adds_extension_groups(tmp_path: Path) -> None:
    groups_file = tmp_path / "groups.yaml"
    groups_file.write_text("notes:\n  - .note\n  - txt\n", encoding="utf-8")

    settings = cli.parse_args(["--groups-file", str(groups_file), "--groups", "notes"])

    assert settings.extra_extension_groups == {"notes": [".note", "txt"]}


@pytest.mark.integration
@pytest.mark.parametrize(
    "argv",
    [
        ["--formats", "pdf"],
        ["--formats", ","],
        ["--name", "a/b"],
        ["--max-files", "0"],
    ],
)
def test_invalid_arguments_exit_with_usage_error(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(argv)

    assert exc_info.value.code == 2


@pytest.mark.integration
def test_malformed_groups_file_is_a_usage_error(tmp_path: Path) -> None:
    groups_file = tmp_path / "groups.yaml"
    groups_file.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(SystemExit):
        cli.parse_args(["--groups-file", str(groups_file)])


@pytest.mark.integration
def test_main_reports_success(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    artifact = tmp_path / "project-fusioned.md"
    run = mocker.patch.object(
        cli,
        "run_fusion",
        return_value=RunSuccess(artifacts=(artifact,), files_processed=4, files_skipped=1),
    )

    exit_code = cli.main(["--root", str(tmp_path), "--formats", "md"])

    assert exit_code == 0
    assert run.call_args.args[0].root == tmp_path
    assert "Wrote project-fusioned.md files=4 skipped=1" in capsys.readouterr().out


@pytest.mark.integration
def test_main_reports_failure_code_and_hint(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    failure = NoFilesFoundFailure(message="No files matched the selected extensions.")
    mocker.patch.object(cli, "run_fusion", return_value=failure)

    exit_code = cli.main(["--root", str(tmp_path)])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "NO_FILES_FOUND: No files matched the selected extensions." in err
    assert f"Hint: {failure.hint}" in err
