import pytest

from repo_fusion.exceptions import FileTooLargeError, SizeLimitExceededError, TooManyFilesError
from repo_fusion.ledger import ResourceLedger
from repo_fusion.settings import Settings


def _ledger(**kwargs: int) -> ResourceLedger:
    params = {"max_files": 3, "max_file_bytes": 100, "max_total_bytes": 150} | kwargs
    return ResourceLedger(**params)


@pytest.mark.unit
def test_try_accept_books_files() -> None:
    ledger = _ledger()

    ledger.try_accept(40)
    ledger.try_accept(60)

    assert ledger.files_accepted == 2
    assert ledger.total_bytes_accepted == 100


@pytest.mark.unit
def test_oversized_file_leaves_counters_untouched() -> None:
    ledger = _ledger()

    with pytest.raises(FileTooLargeError) as exc_info:
        ledger.try_accept(101)

    assert ledger.files_accepted == 0
    assert ledger.total_bytes_accepted == 0
    assert exc_info.value.code == "FILE_TOO_LARGE"


@pytest.mark.unit
def test_file_count_ceiling() -> None:
    ledger = _ledger(max_files=1)
    ledger.try_accept(10)

    with pytest.raises(TooManyFilesError) as exc_info:
        ledger.try_accept(10)

    assert str(exc_info.value) == "Too many files found (2 > 1)"
    assert ledger.files_accepted == 1


@pytest.mark.unit
def test_aggregate_ceiling_is_never_crossed() -> None:
    ledger = _ledger()
    ledger.try_accept(90)

    with pytest.raises(SizeLimitExceededError):
        ledger.try_accept(90)

    assert ledger.total_bytes_accepted == 90
    assert ledger.total_bytes_accepted <= ledger.max_total_bytes


@pytest.mark.unit
def test_from_settings_converts_units() -> None:
    ledger = ResourceLedger.from_settings(Settings(max_file_size_kb=2, max_total_size_mb=1, max_files=7))

    assert ledger.max_file_bytes == 2048
    assert ledger.max_total_bytes == 1024 * 1024
    assert ledger.max_files == 7


@pytest.mark.unit
def test_file_count_is_checked_before_file_size() -> None:
    ledger = _ledger(max_files=1)
    ledger.try_accept(10)

    with pytest.raises(TooManyFilesError):
        ledger.try_accept(500)
