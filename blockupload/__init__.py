"""Resumable, parallel, block-wise upload of large files to object storage."""

from .blocks import BLOCK_BITS, BLOCK_SIZE, block_count, block_ranges, block_size
from .config import Settings, get_settings, set_settings, settings_from_env
from .errors import (
    InvalidPutProgressError,
    PutFailedError,
    UnmatchedChecksumError,
    UploadError,
)
from .models import BlockResult, PutRet, UploadOptions
from .pool import WorkerPool, default_pool
from .retry import retry_call
from .uploader import Backend, BytesSource, FileSource, Uploader

__all__ = [
    "BLOCK_BITS",
    "BLOCK_SIZE",
    "Backend",
    "BlockResult",
    "BytesSource",
    "FileSource",
    "InvalidPutProgressError",
    "PutFailedError",
    "PutRet",
    "Settings",
    "UnmatchedChecksumError",
    "UploadError",
    "UploadOptions",
    "Uploader",
    "WorkerPool",
    "block_count",
    "block_ranges",
    "block_size",
    "default_pool",
    "get_settings",
    "retry_call",
    "set_settings",
    "settings_from_env",
]
