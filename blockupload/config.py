"""
Process-wide upload settings and environment-driven configuration.

The module-level settings are read by ``default_pool()`` when it first builds
the shared worker pool and by every ``Uploader`` that was not given its own
``Settings``.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

DEFAULT_WORKERS = 4
DEFAULT_CHUNK_SIZE = 256 * 1024  # 256k
DEFAULT_TRY_TIMES = 3


@dataclass
class Settings:
    task_qsize: int = 0  # 0 means workers * 4
    workers: int = 0
    chunk_size: int = 0
    try_times: int = 0

    def with_defaults(self) -> "Settings":
        """Copy of these settings with every zero field replaced by its default."""
        v = replace(self)
        if v.workers == 0:
            v.workers = DEFAULT_WORKERS
        if v.task_qsize == 0:
            v.task_qsize = v.workers * 4
        if v.chunk_size == 0:
            v.chunk_size = DEFAULT_CHUNK_SIZE
        if v.try_times == 0:
            v.try_times = DEFAULT_TRY_TIMES
        return v


_settings = Settings().with_defaults()


def set_settings(v: Settings) -> None:
    """Replace the process-wide settings.

    Has no effect on a default pool that already exists.
    """
    global _settings
    _settings = v.with_defaults()


def get_settings() -> Settings:
    return _settings


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

_ENV_FIELDS = {
    "BLOCKUPLOAD_WORKERS": ("workers", 1),
    "BLOCKUPLOAD_TASK_QSIZE": ("task_qsize", 1),
    "BLOCKUPLOAD_CHUNK_SIZE_KB": ("chunk_size", 1024),
    "BLOCKUPLOAD_TRY_TIMES": ("try_times", 1),
}


def settings_from_env() -> Settings:
    """Build ``Settings`` from ``BLOCKUPLOAD_*`` variables (and ``.env``)."""
    load_dotenv()
    values = {}
    for name, (field, scale) in _ENV_FIELDS.items():
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[field] = int(raw) * scale
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {raw!r}.")
    return Settings(**values).with_defaults()


class CliConfig:
    """Configuration for the command-line uploader."""

    def __init__(self) -> None:
        # Imported here so that the core modules stay free of Azure imports.
        from .azure_backend import parse_upload_token

        load_dotenv()

        self.upload_token: str = os.environ["UPLOAD_TOKEN"].strip()
        self.key_prefix: str = os.getenv("KEY_PREFIX", "").strip("/")
        self.log_path: Optional[str] = os.getenv("LOG_PATH")
        self.settings: Settings = settings_from_env()

        # Fail before touching the network if the token cannot be used
        self.token = parse_upload_token(self.upload_token)
