import os
from pathlib import Path

import pytest
from pydantic import ValidationError
from pytest_mock import MockerFixture

from repo_fusion import settings as settings_module
from repo_fusion.config import DEFAULT_IGNORE_PATTERNS
from repo_fusion.settings import Settings


@pytest.mark.unit
def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.root.resolve() == Path.cwd().resolve()
    assert settings.max_file_size_kb == 1024
    assert settings.max_files == 10_000
    assert settings.max_total_size_mb == 100
    assert settings.max_symlink_audit_entries == 10
    assert settings.allow_symlinks is False
    assert settings.exclude_secrets is True
    assert settings.ignore_patterns == DEFAULT_IGNORE_PATTERNS
    assert settings.enabled_suffixes == [".txt", ".md", ".html"]


@pytest.mark.unit
def test_artifact_dir(tmp_path: Path) -> None:
    assert Settings(root=tmp_path).artifact_dir == tmp_path
    assert Settings(root=tmp_path, output_dir=Path("out")).artifact_dir == tmp_path / "out"


@pytest.mark.unit
@pytest.mark.parametrize("name", ["", "a/b", "..", "x\\y"])
def test_generated_file_name_must_be_plain(name: str) -> None:
    with pytest.raises(ValidationError):
        Settings(generated_file_name=name)


@pytest.mark.unit
def test_from_env_reads_prefixed_variables(mocker: MockerFixture) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")
    mocker.patch.dict(
        os.environ,
        {
            "REPO_FUSION_MAX_FILES": "5",
            "REPO_FUSION_EXTENSION_GROUPS": "backend, web",
            "REPO_FUSION_ALLOW_SYMLINKS": "true",
            "OTHER_MAX_FILES": "9",
        },
    )

    settings = Settings.from_env()

    assert settings.max_files == 5
    assert settings.extension_groups == ["backend", "web"]
    assert settings.allow_symlinks is True


@pytest.mark.unit
def test_from_env_precedence(tmp_path: Path, mocker: MockerFixture) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("REPO_FUSION_MAX_FILES=3\nREPO_FUSION_MAX_LINE_LENGTH=80\n", encoding="utf-8")
    mocker.patch.object(settings_module, "ENV_FILE", str(env_file))
    mocker.patch.dict(os.environ, {"REPO_FUSION_MAX_FILES": "4"})

    settings = Settings.from_env(max_line_length=90)

    assert settings.max_files == 4
    assert settings.max_line_length == 90
