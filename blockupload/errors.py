"""Exceptions raised by the resumable uploader."""


class UploadError(Exception):
    """Base class for every error raised by blockupload."""


class InvalidPutProgressError(UploadError, ValueError):
    """The progress list does not have one entry per block."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(
            f"invalid put progress: expected {expected} entries, got {got}"
        )
        self.expected = expected
        self.got = got


class PutFailedError(UploadError):
    """At least one block could not be uploaded within its retry budget.

    Per-block detail is delivered through ``notify_err`` and the progress list.
    """

    def __init__(self, failed: int, total: int) -> None:
        super().__init__(f"resumable put failed: {failed}/{total} block(s) failed")
        self.failed = failed
        self.total = total


class UnmatchedChecksumError(UploadError):
    """The server acknowledged a chunk with a checksum that differs from ours."""
