"""
Azure Blob Storage backend.

Blocks are staged on a block blob as ``chunk_size`` pieces (whole 4 MiB blocks
when that would exceed the blob's block limit) and committed with a single
block list. The upload token is a SAS URL, either scoped to a
container (the caller supplies the key) or to one blob (the token names the
object, which is what key-less uploads use).
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from azure.storage.blob import BlobBlock, BlobClient, ContainerClient, ContentSettings

from .blocks import BLOCK_SIZE, block_count, block_offset, block_ranges, block_size
from .errors import UnmatchedChecksumError, UploadError
from .models import BlockResult, PutRet, UploadOptions
from .retry import retry_call

logger = logging.getLogger(__name__)

METADATA_PREFIX = "x:"
MAX_BLOCKS_PER_BLOB = 50_000


# ---------------------------------------------------------------------------
# Upload token
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UploadToken:
    account_url: str
    container: str
    blob_name: Optional[str]
    sas: str


def parse_upload_token(uptoken: str) -> UploadToken:
    """Split a SAS URL into account URL, container, optional blob and SAS."""
    parts = urlsplit(uptoken.strip())

    if parts.scheme.lower() != "https":
        raise ValueError("Upload token must be an https SAS URL.")
    if not parts.netloc:
        raise ValueError("Upload token has no storage account host.")

    container, _, blob_name = parts.path.lstrip("/").partition("/")
    if not container:
        raise ValueError(
            "Upload token has no container in its path. "
            "Generate a SAS URL for a container or a blob."
        )

    query = parse_qs(parts.query)
    if "sig" not in query:
        raise ValueError(
            "Upload token carries no SAS signature (sig=...). "
            "It was likely truncated. Copy the full SAS URL."
        )

    return UploadToken(
        account_url=f"{parts.scheme}://{parts.netloc}",
        container=unquote(container),
        blob_name=unquote(blob_name) or None,
        sas=parts.query,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def block_id(blk_idx: int, offset: int, length: int) -> str:
    """Fixed-length id of the ``length``-byte piece of block ``blk_idx`` at ``offset``."""
    raw = (
        blk_idx.to_bytes(8, byteorder="big")
        + offset.to_bytes(4, byteorder="big")
        + length.to_bytes(4, byteorder="big")
    )
    return base64.b64encode(raw).decode("ascii")


def parse_block_id(piece_id: str) -> Tuple[int, int, int]:
    """Inverse of ``block_id``: ``(blk_idx, offset, length)``."""
    raw = base64.b64decode(piece_id, validate=True)
    if len(raw) != 16:
        raise ValueError(f"Not a piece id: {piece_id!r}")
    return (
        int.from_bytes(raw[:8], byteorder="big"),
        int.from_bytes(raw[8:12], byteorder="big"),
        int.from_bytes(raw[12:], byteorder="big"),
    )


def staged_prefix(ctx: str, blk_idx: int, blk_size: int) -> Tuple[List[str], int]:
    """Ids in ``ctx`` forming a gapless run from offset 0, and where the run ends.

    Unknown, foreign or duplicate ids are dropped, so an entry saved while its
    block was being updated still resumes from a consistent point.
    """
    pieces: Dict[int, Tuple[str, int]] = {}
    for piece_id in ctx.split(",") if ctx else []:
        try:
            idx, offset, length = parse_block_id(piece_id)
        except ValueError:
            continue
        if idx == blk_idx and length > 0:
            pieces.setdefault(offset, (piece_id, length))

    chain: List[str] = []
    end = 0
    while end < blk_size and end in pieces:
        piece_id, length = pieces[end]
        chain.append(piece_id)
        end += length
    if end > blk_size:
        return [], 0
    return chain, end


def piece_count(fsize: int, step: int) -> int:
    return sum(-(-size // step) for _, _, size in block_ranges(fsize))


def piece_size(fsize: int, chunk_size: int) -> int:
    """``chunk_size``, or one piece per block if that would exceed the blob's block limit."""
    if piece_count(fsize, chunk_size) <= MAX_BLOCKS_PER_BLOB:
        return chunk_size
    return BLOCK_SIZE


def guess_content_type(key: str) -> str:
    suffix = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return {
        "csv": "text/csv",
        "json": "application/json",
        "parquet": "application/octet-stream",
        "zip": "application/zip",
        "gz": "application/gzip",
        "tar": "application/x-tar",
        "txt": "text/plain",
        "tsv": "text/tab-separated-values",
    }.get(suffix, "application/octet-stream")


def custom_metadata(params: Dict[str, str]) -> Dict[str, str]:
    """Blob metadata from ``x:`` params; other params are ignored."""
    return {
        name[len(METADATA_PREFIX):]: value
        for name, value in params.items()
        if name.startswith(METADATA_PREFIX) and len(name) > len(METADATA_PREFIX)
    }


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

@dataclass
class AzureSession:
    blob_client: BlobClient
    blob_name: str
    host: str
    fsize: int = 0


class AzureBlobBackend:
    def __init__(self, connection_timeout: int = 30, read_timeout: int = 120) -> None:
        self.connection_timeout = connection_timeout
        self.read_timeout = read_timeout

    def open_session(self, uptoken: str, key: str, has_key: bool, fsize: int) -> AzureSession:
        token = parse_upload_token(uptoken)

        if has_key:
            if not key:
                raise ValueError("Key must not be empty; use an upload without key instead.")
            if token.blob_name is not None and token.blob_name != key:
                raise ValueError(
                    f"Upload token is scoped to blob '{token.blob_name}', not '{key}'."
                )
            blob_name = key
        else:
            if token.blob_name is None:
                raise ValueError(
                    "Upload without key needs a blob-scoped upload token; "
                    f"this one only names container '{token.container}'."
                )
            blob_name = token.blob_name

        if block_count(fsize) > MAX_BLOCKS_PER_BLOB:
            raise ValueError(
                f"File too large for one block blob: {fsize:,} bytes needs "
                f"{block_count(fsize):,} blocks (limit {MAX_BLOCKS_PER_BLOB:,})."
            )

        container_client = ContainerClient(
            account_url=token.account_url,
            container_name=token.container,
            credential=token.sas,
            connection_timeout=self.connection_timeout,
            read_timeout=self.read_timeout,
        )
        logger.debug(f"Session for {token.container}/{blob_name} on {token.account_url}")
        return AzureSession(
            blob_client=container_client.get_blob_client(blob_name),
            blob_name=blob_name,
            host=token.account_url,
            fsize=fsize,
        )

    def put_block(
        self,
        session: AzureSession,
        ret: BlockResult,
        source,
        blk_idx: int,
        blk_size: int,
        options: UploadOptions,
    ) -> None:
        # Staged pieces only survive on the account they were sent to
        if ret.host == session.host:
            staged, offset = staged_prefix(ret.ctx, blk_idx, blk_size)
        else:
            staged, offset = [], 0
        if offset != ret.offset:
            logger.debug(f"Block {blk_idx}: resuming at {offset}, entry said {ret.offset}")
        if not staged:
            ret.checksum = ""
            ret.crc32 = 0
        ret.ctx = ",".join(staged)
        ret.offset = offset
        ret.host = session.host

        offbase = block_offset(blk_idx)
        step = piece_size(session.fsize, options.chunk_size)

        while ret.offset < blk_size:
            length = min(step, blk_size - ret.offset)
            data = source.read_at(offbase + ret.offset, length)
            piece_id = block_id(blk_idx, ret.offset, length)
            md5 = hashlib.md5(data).digest()

            def stage() -> None:
                resp = session.blob_client.stage_block(
                    block_id=piece_id, data=data, length=length
                )
                server_md5 = resp.get("content_md5") if resp else None
                if server_md5 is not None and bytes(server_md5) != md5:
                    raise UnmatchedChecksumError(
                        f"Block {blk_idx} offset {ret.offset}: server MD5 does not match."
                    )

            def on_retry(n: int, exc: Exception) -> None:
                logger.info(
                    f"Block {blk_idx} offset {ret.offset}: stage attempt "
                    f"{n}/{options.try_times} failed, retrying — {exc}"
                )

            retry_call(stage, options.try_times, on_retry)

            staged.append(piece_id)
            ret.ctx = ",".join(staged)
            ret.checksum = base64.b64encode(md5).decode("ascii")
            ret.crc32 = binascii.crc32(data)
            ret.offset += length
            options.notify(blk_idx, blk_size, ret)

    def make_file(
        self,
        session: AzureSession,
        key: str,
        has_key: bool,
        fsize: int,
        options: UploadOptions,
    ) -> PutRet:
        ids: List[str] = []
        for blk_idx, ret in enumerate(options.progresses):
            size = block_size(blk_idx, fsize)
            chain, end = staged_prefix(ret.ctx, blk_idx, size)
            if end != size:
                raise UploadError(
                    f"Block {blk_idx} has {end:,} of {size:,} bytes staged; not committing."
                )
            ids.extend(chain)
        if len(ids) > MAX_BLOCKS_PER_BLOB:
            raise UploadError(
                f"{len(ids):,} staged pieces exceed the block blob limit of "
                f"{MAX_BLOCKS_PER_BLOB:,}; not committing."
            )

        content_type = options.mime_type or guess_content_type(session.blob_name)
        resp = session.blob_client.commit_block_list(
            [BlobBlock(block_id=i) for i in ids],
            metadata=custom_metadata(options.params) or None,
            content_settings=ContentSettings(content_type=content_type),
        )
        logger.info(f"Committed '{session.blob_name}' ({len(ids)} staged piece(s)).")
        return PutRet(
            key=session.blob_name,
            etag=str((resp or {}).get("etag", "")).strip('"'),
            fsize=fsize,
            mime_type=content_type,
        )
