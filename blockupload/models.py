"""Data passed between the uploader, its backend and the caller."""

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class BlockResult:
    """State of one block after its most recent upload attempt.

    A zero-valued entry means the block has not been started. Entries kept
    from a failed call can be passed back in to resume it.
    """

    ctx: str = ""
    checksum: str = ""
    crc32: int = 0
    offset: int = 0
    host: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockResult":
        return cls(
            ctx=data.get("ctx", ""),
            checksum=data.get("checksum", ""),
            crc32=int(data.get("crc32", 0)),
            offset=int(data.get("offset", 0)),
            host=data.get("host", ""),
        )


Notify = Callable[[int, int, BlockResult], None]
NotifyErr = Callable[[int, int, Exception], None]


def _notify_nil(blk_idx: int, blk_size: int, ret: BlockResult) -> None:
    pass


def _notify_err_nil(blk_idx: int, blk_size: int, err: Exception) -> None:
    pass


@dataclass
class UploadOptions:
    """Per-call options. Zero or ``None`` fields fall back to the settings.

    ``notify`` and ``notify_err`` are called from worker threads, several
    blocks at a time.
    """

    params: Dict[str, str] = field(default_factory=dict)  # only "x:" names are kept
    mime_type: str = ""
    chunk_size: int = 0
    try_times: int = 0
    progresses: Optional[List[BlockResult]] = None
    notify: Optional[Notify] = None
    notify_err: Optional[NotifyErr] = None

    def fill_defaults(self, chunk_size: int, try_times: int) -> None:
        if self.chunk_size == 0:
            self.chunk_size = chunk_size
        if self.try_times == 0:
            self.try_times = try_times
        if self.notify is None:
            self.notify = _notify_nil
        if self.notify_err is None:
            self.notify_err = _notify_err_nil


@dataclass
class PutRet:
    key: str
    etag: str = ""
    fsize: int = 0
    mime_type: str = ""
