from __future__ import annotations

from typing import TYPE_CHECKING

from repo_fusion.exceptions import FileTooLargeError, SizeLimitExceededError, TooManyFilesError

if TYPE_CHECKING:
    from repo_fusion.settings import Settings


class ResourceLedger:
    """Run-wide counters enforcing the file count and byte ceilings.

    Counters only grow. `try_accept` is called before a file's content is
    loaded; it either books the file or raises without touching the counters,
    so `total_bytes_accepted` can never pass `max_total_bytes`.

    Attributes:
        max_files: Maximum number of accepted files.
        max_file_bytes: Maximum size of a single file.
        max_total_bytes: Maximum aggregate size of accepted files.
        files_accepted: Files booked so far.
        total_bytes_accepted: Bytes booked so far.
    """

    def __init__(self, *, max_files: int, max_file_bytes: int, max_total_bytes: int) -> None:
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes
        self.max_total_bytes = max_total_bytes
        self.files_accepted = 0
        self.total_bytes_accepted = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> ResourceLedger:
        return cls(
            max_files=settings.max_files,
            max_file_bytes=settings.max_file_size_bytes,
            max_total_bytes=settings.max_total_size_bytes,
        )

    def check_file_size(self, size: int) -> None:
        """Raise `FileTooLargeError` if one file is over the per-file ceiling."""
        if size > self.max_file_bytes:
            raise FileTooLargeError(size_bytes=size, limit_bytes=self.max_file_bytes)

    def try_accept(self, size: int) -> None:
        """Book one file of `size` bytes.

        Args:
            size (int): the file size in bytes

        Raises:
            TooManyFilesError: file count ceiling exceeded (abort the run).
            FileTooLargeError: per-file ceiling exceeded (skip this file).
            SizeLimitExceededError: aggregate ceiling exceeded (abort the run).
        """
        if self.files_accepted + 1 > self.max_files:
            raise TooManyFilesError(count=self.files_accepted + 1, limit=self.max_files)
        self.check_file_size(size)
        if self.total_bytes_accepted + size > self.max_total_bytes:
            raise SizeLimitExceededError(total_bytes=self.total_bytes_accepted + size, limit_bytes=self.max_total_bytes)
        self.files_accepted += 1
        self.total_bytes_accepted += size

