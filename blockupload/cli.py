"""
Command-line uploader.

Usage:
    python -m blockupload <path> [key] [--key-prefix PREFIX] [--no-key] [--dry-run]

    <path> can be a single file or a directory.
    When a directory is given, all files under it (recursively) are uploaded,
    preserving the relative directory structure as the object key.

The upload token (a SAS URL) is read from UPLOAD_TOKEN, usually via .env.
Progress is saved per file under logs/; re-run the same command to resume.
"""

import argparse
import logging
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .azure_backend import AzureBlobBackend
from .blocks import block_count
from .config import CliConfig
from .errors import PutFailedError
from .models import BlockResult, UploadOptions
from .pool import WorkerPool
from .progress import ProgressLog
from .uploader import Uploader


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def build_logger(log_dir: Path) -> logging.Logger:
    """Attach console (INFO) and file (DEBUG) handlers to the package logger."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "uploader_process.log"

    logger = logging.getLogger("blockupload")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console)
    logger.addHandler(fh)
    return logger


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------

class _ProgressReporter:
    """Logs one line per finished block. Called from worker threads."""

    def __init__(self, logger: logging.Logger, file_size: int, progresses: List[BlockResult]) -> None:
        self.logger = logger
        self.file_size = file_size
        self.total_blocks = len(progresses)
        self._lock = threading.Lock()
        self._offsets: Dict[int, int] = {i: p.offset for i, p in enumerate(progresses)}
        self._resumed = sum(self._offsets.values())
        self._t0 = time.monotonic()

    def on_block(self, blk_idx: int, blk_size: int, ret: BlockResult) -> None:
        with self._lock:
            self._offsets[blk_idx] = ret.offset
            if ret.offset < blk_size:
                return
            done = sum(self._offsets.values())
            sent = done - self._resumed

        elapsed = max(time.monotonic() - self._t0, 0.001)
        speed_mb = (sent / elapsed) / (1024 * 1024)
        pct = done / self.file_size * 100 if self.file_size else 100.0
        eta_s = (self.file_size - done) / (sent / elapsed) if sent > 0 else 0
        self.logger.info(
            f"[{pct:5.1f}%] block {blk_idx + 1}/{self.total_blocks}  "
            f"speed={speed_mb:.1f} MB/s  eta={_fmt_seconds(eta_s)}"
        )

    def on_block_error(self, blk_idx: int, blk_size: int, err: Exception) -> None:
        self.logger.error(f"Block {blk_idx + 1}/{self.total_blocks} could not be uploaded — {err}")


# ---------------------------------------------------------------------------
# Single file
# ---------------------------------------------------------------------------

def upload_file(
    uploader: Uploader,
    upload_token: str,
    file_path: Path,
    key: Optional[str],
    progress_log: ProgressLog,
    logger: logging.Logger,
) -> bool:
    """Upload one file, resuming from ``progress_log``. Returns True on success.

    ``key`` of None means the object name comes from the upload token.
    """
    file_size = file_path.stat().st_size
    resolved = str(file_path.resolve())

    logger.info(
        f"File : {file_path}  ({file_size:,} bytes / "
        f"{file_size / (1024**3):.3f} GiB)  |  Blocks: {block_count(file_size)}"
    )

    if progress_log.load() and progress_log.matches(resolved, file_size, key):
        if progress_log.is_completed:
            logger.info(
                f"Already completed on {progress_log.data.get('completed_at') or 'a previous run'} — skipping."
            )
            return True
        done = sum(1 for p in progress_log.progresses if p.ctx)
        logger.info(f"Resuming: {done}/{len(progress_log.progresses)} block(s) already started.")
    else:
        if progress_log.path.exists():
            logger.warning("Progress log mismatch — starting fresh (file or key changed).")
        progress_log.reset(file_size)

    progress_log.mark_started(resolved, file_size, key)
    reporter = _ProgressReporter(logger, file_size, progress_log.progresses)

    def notify(blk_idx: int, blk_size: int, ret: BlockResult) -> None:
        progress_log.on_block(blk_idx, blk_size, ret)
        reporter.on_block(blk_idx, blk_size, ret)

    options = UploadOptions(
        params={"x:original_filename": file_path.name},
        progresses=progress_log.progresses,
        notify=notify,
        notify_err=reporter.on_block_error,
    )

    try:
        if key is None:
            ret = uploader.rput_file_without_key(upload_token, file_path, options)
        else:
            ret = uploader.rput_file(upload_token, key, file_path, options)
    except PutFailedError as exc:
        progress_log.save()
        logger.error(f"Incomplete: {exc}. Re-run to resume.")
        return False
    except Exception as exc:
        progress_log.save()
        logger.error(f"Upload failed: {exc}. Re-run to retry; staged blocks are kept.")
        return False

    progress_log.mark_completed()
    logger.info(f"Committed '{ret.key}' ({ret.fsize:,} bytes, {ret.mime_type}).")
    return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt_seconds(s: float) -> str:
    if s <= 0:
        return "--:--"
    s = int(s)
    h, rem = divmod(s, 3600)
    m, sec = divmod(rem, 60)
    if h:
        return f"{h}h{m:02d}m{sec:02d}s"
    if m:
        return f"{m}m{sec:02d}s"
    return f"{sec}s"


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="blockupload",
        description=(
            "Upload a file or an entire directory tree to object storage "
            "with resumable, block-wise, parallel transfers."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Upload a single file under its own name\n"
            "  python -m blockupload report.csv\n\n"
            "  # Upload a single file under an explicit key\n"
            "  python -m blockupload report.csv exports/2024/report.csv\n\n"
            "  # Upload to the blob named by a blob-scoped token\n"
            "  python -m blockupload report.csv --no-key\n\n"
            "  # Upload all files in a directory under a prefix\n"
            "  python -m blockupload /data/exports --key-prefix 2024/q1\n"
        ),
    )
    parser.add_argument(
        "path",
        help="Path to a file or directory to upload. Directories are walked recursively.",
    )
    parser.add_argument(
        "key",
        nargs="?",
        default=None,
        help="Object key for a single file. Defaults to the file name (with prefix).",
    )
    parser.add_argument(
        "--key-prefix",
        default=None,
        metavar="PREFIX",
        help="Prefix (virtual folder) prepended to every key. Overrides KEY_PREFIX in .env.",
    )
    parser.add_argument(
        "--no-key",
        action="store_true",
        help="Single file only: let the upload token name the object.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and list files that would be uploaded, without uploading.",
    )
    return parser.parse_args(argv)


def _collect_files(root: Path) -> List[Path]:
    """Return all files under root, sorted for deterministic order."""
    return sorted(f for f in root.rglob("*") if f.is_file())


def _make_key(file: Path, root: Path, prefix: str) -> str:
    """
    Compute the object key for a file relative to root, with optional prefix.

    Example:
        root   = /data/exports
        file   = /data/exports/subdir/report.csv
        prefix = 2024/q1
        result = 2024/q1/subdir/report.csv
    """
    key = file.relative_to(root).as_posix()
    if prefix:
        key = f"{prefix}/{key}"
    return key


def _resolve_progress_path(name: str, base_dir: Path, log_path_override: Optional[str]) -> Path:
    """Return the path for a file's progress JSON log."""
    safe = name.replace("/", "_").replace("\\", "_")
    if log_path_override:
        log_dir = Path(log_path_override)
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / f"{safe}.upload.json"
    return base_dir / "logs" / f"{safe}.upload.json"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)

    # Config: validate everything (including the token) before touching the network
    try:
        cfg = CliConfig()
    except KeyError:
        print(
            "ERROR: UPLOAD_TOKEN not set. Put a SAS URL in .env or the environment.",
            file=sys.stderr,
        )
        sys.exit(1)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    base_dir = Path.cwd()
    logger = build_logger(base_dir / "logs")
    prefix = (args.key_prefix if args.key_prefix is not None else cfg.key_prefix).strip("/")

    logger.info("=" * 60)
    logger.info("  blockupload — resumable block uploader")
    logger.info("=" * 60)

    input_path = Path(args.path).expanduser().resolve()
    if not input_path.exists():
        logger.error(f"Path not found: {input_path}")
        sys.exit(1)

    # Build the list of (file_path, key) pairs; a None key comes from the token
    if input_path.is_file():
        if args.no_key:
            if args.key:
                logger.error("Pass either a key or --no-key, not both.")
                sys.exit(1)
            key: Optional[str] = None
        elif args.key:
            key = args.key
        else:
            key = f"{prefix}/{input_path.name}" if prefix else input_path.name
        files: List[Tuple[Path, Optional[str]]] = [(input_path, key)]
    elif input_path.is_dir():
        if args.no_key or args.key:
            logger.error("A key or --no-key can only be used with a single file.")
            sys.exit(1)
        all_files = _collect_files(input_path)
        if not all_files:
            logger.error(f"Directory is empty (no files found): {input_path}")
            sys.exit(1)
        files = [(f, _make_key(f, input_path, prefix)) for f in all_files]
    else:
        logger.error(f"Path is neither a file nor a directory: {input_path}")
        sys.exit(1)

    total_files = len(files)
    total_bytes = sum(f.stat().st_size for f, _ in files)
    settings = cfg.settings

    logger.info(f"Source    : {input_path}")
    logger.info(f"Target    : {cfg.token.account_url}/{cfg.token.container}")
    logger.info(f"Files     : {total_files:,}  ({total_bytes / (1024**3):.3f} GiB total)")
    logger.info(
        f"Chunk     : {settings.chunk_size // 1024} KB  |  Workers: {settings.workers}"
        f"  |  Tries: {settings.try_times}"
    )

    if args.dry_run:
        logger.info("[DRY RUN] Files that would be uploaded:")
        width = len(str(total_files))
        for i, (fp, k) in enumerate(files, 1):
            target = k if k is not None else cfg.token.blob_name or "<token blob>"
            logger.info(f"  [{i:>{width}}] {fp.stat().st_size:>14,} bytes  →  {target}")
        logger.info("[DRY RUN] No files were uploaded.")
        sys.exit(0)

    uploader = Uploader(AzureBlobBackend(), pool=WorkerPool.from_settings(settings), settings=settings)

    succeeded: List[str] = []
    failed: List[str] = []

    for file_num, (file_path, key) in enumerate(files, 1):
        name = key if key is not None else (cfg.token.blob_name or file_path.name)
        logger.info("")
        logger.info(f"[{file_num}/{total_files}] {file_path.name}  →  {name}")

        progress_log = ProgressLog(_resolve_progress_path(name, base_dir, cfg.log_path))
        try:
            success = upload_file(uploader, cfg.upload_token, file_path, key, progress_log, logger)
        except (OSError, ValueError) as exc:
            logger.error(f"{file_path.name}: {exc}")
            success = False

        if success:
            succeeded.append(name)
        else:
            failed.append(name)
            logger.warning(f"File failed: {file_path.name} — continuing with remaining files.")

    logger.info("")
    logger.info("=" * 60)
    logger.info(f"  Summary: {len(succeeded)}/{total_files} files uploaded successfully")
    if failed:
        logger.warning(f"  {len(failed)} file(s) did not complete:")
        for name in failed:
            logger.warning(f"    - {name}")
        logger.warning("  Re-run the same command to resume failed files.")
    logger.info("=" * 60)

    sys.exit(2 if failed else 0)
