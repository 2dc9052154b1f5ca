"""
Resumable block upload orchestration.

A file is split into 4 MiB blocks. Every block is uploaded by its own task on a
shared ``WorkerPool`` and retried independently; the object is finalized only
when every block succeeded. A failed call leaves ``options.progresses`` filled
in so the caller can pass it back to resume.
"""

import logging
import os
import queue
from typing import Any, List, Optional, Protocol, Tuple, Union

from .blocks import block_count, block_size
from .config import Settings, get_settings
from .errors import InvalidPutProgressError, PutFailedError
from .models import BlockResult, UploadOptions
from .pool import WorkerPool, default_pool
from .retry import retry_call

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Byte sources
# ---------------------------------------------------------------------------

class ByteSource(Protocol):
    def read_at(self, offset: int, length: int) -> bytes:
        ...


class BytesSource:
    """Random access over an in-memory buffer."""

    def __init__(self, data: Union[bytes, bytearray, memoryview]) -> None:
        self._data = memoryview(data)

    def read_at(self, offset: int, length: int) -> bytes:
        return bytes(self._data[offset:offset + length])


class FileSource:
    """Random access over a local file.

    Each read opens its own handle so concurrent workers never share a file
    position.
    """

    def __init__(self, path: Union[str, os.PathLike]) -> None:
        self.path = os.fspath(path)

    def size(self) -> int:
        return os.stat(self.path).st_size

    def read_at(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as fh:
            fh.seek(offset)
            data = fh.read(length)
        if len(data) != length:
            raise EOFError(
                f"{self.path}: short read at offset {offset} ({len(data)}/{length} bytes)"
            )
        return data


def as_source(source: Any) -> ByteSource:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(source)
    return source


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class Backend(Protocol):
    """Wire operations used by the uploader."""

    def open_session(self, uptoken: str, key: str, has_key: bool, fsize: int) -> Any:
        """Build a transport scoped to ``uptoken``; called once per upload."""

    def put_block(
        self,
        session: Any,
        ret: BlockResult,
        source: ByteSource,
        blk_idx: int,
        blk_size: int,
        options: UploadOptions,
    ) -> None:
        """Upload one block, updating ``ret`` in place. Must be retryable."""

    def make_file(
        self,
        session: Any,
        key: str,
        has_key: bool,
        fsize: int,
        options: UploadOptions,
    ) -> Any:
        """Commit every uploaded block into one object and return the result."""


# ---------------------------------------------------------------------------
# Uploader
# ---------------------------------------------------------------------------

class Uploader:
    def __init__(
        self,
        backend: Backend,
        pool: Optional[WorkerPool] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.backend = backend
        self._pool = pool
        self._settings = settings.with_defaults() if settings is not None else None

    @property
    def pool(self) -> WorkerPool:
        if self._pool is None:
            self._pool = default_pool()
        return self._pool

    @property
    def settings(self) -> Settings:
        return self._settings if self._settings is not None else get_settings()

    def rput(
        self, uptoken: str, key: str, source: Any, fsize: int,
        options: Optional[UploadOptions] = None,
    ) -> Any:
        return self._rput(uptoken, key, True, source, fsize, options)

    def rput_without_key(
        self, uptoken: str, source: Any, fsize: int,
        options: Optional[UploadOptions] = None,
    ) -> Any:
        return self._rput(uptoken, "", False, source, fsize, options)

    def rput_file(
        self, uptoken: str, key: str, local_file: Union[str, os.PathLike],
        options: Optional[UploadOptions] = None,
    ) -> Any:
        src = FileSource(local_file)
        return self._rput(uptoken, key, True, src, src.size(), options)

    def rput_file_without_key(
        self, uptoken: str, local_file: Union[str, os.PathLike],
        options: Optional[UploadOptions] = None,
    ) -> Any:
        src = FileSource(local_file)
        return self._rput(uptoken, "", False, src, src.size(), options)

    def _rput(
        self,
        uptoken: str,
        key: str,
        has_key: bool,
        source: Any,
        fsize: int,
        options: Optional[UploadOptions],
    ) -> Any:
        blk_cnt = block_count(fsize)

        if options is None:
            options = UploadOptions()
        if options.progresses is None:
            options.progresses = [BlockResult() for _ in range(blk_cnt)]
        elif len(options.progresses) != blk_cnt:
            raise InvalidPutProgressError(blk_cnt, len(options.progresses))

        settings = self.settings
        options.fill_defaults(settings.chunk_size, settings.try_times)

        source = as_source(source)
        session = self.backend.open_session(uptoken, key, has_key, fsize)
        target = key if has_key else "<server-assigned>"
        logger.debug(f"rput {target}: {fsize:,} bytes in {blk_cnt} block(s)")

        done: "queue.Queue[Tuple[int, Optional[Exception]]]" = queue.Queue()
        pool = self.pool
        for blk_idx in range(blk_cnt):
            task = self._block_task(
                session, source, blk_idx, block_size(blk_idx, fsize), options, done
            )
            pool.submit(task)

        failed: List[int] = []
        for _ in range(blk_cnt):
            blk_idx, err = done.get()
            if err is not None:
                failed.append(blk_idx)

        if failed:
            logger.warning(
                f"rput {target}: {len(failed)}/{blk_cnt} block(s) failed: {sorted(failed)}"
            )
            raise PutFailedError(len(failed), blk_cnt)

        return self.backend.make_file(session, key, has_key, fsize, options)

    def _block_task(
        self,
        session: Any,
        source: ByteSource,
        blk_idx: int,
        blk_size: int,
        options: UploadOptions,
        done: "queue.Queue[Tuple[int, Optional[Exception]]]",
    ):
        ret = options.progresses[blk_idx]

        def attempt() -> None:
            self.backend.put_block(session, ret, source, blk_idx, blk_size, options)

        def on_retry(n: int, exc: Exception) -> None:
            logger.info(
                f"Block {blk_idx}: attempt {n}/{options.try_times} failed, retrying — {exc}"
            )

        def task() -> None:
            err: Optional[Exception] = None
            try:
                retry_call(attempt, options.try_times, on_retry)
            except Exception as exc:
                err = exc
                logger.warning(
                    f"Block {blk_idx}: failed after {options.try_times} attempt(s) — {exc}"
                )
                options.notify_err(blk_idx, blk_size, exc)
            finally:
                done.put((blk_idx, err))

        return task
