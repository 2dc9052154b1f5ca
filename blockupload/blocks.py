"""Block layout of a file: every block is 4 MiB except the last."""

from typing import Iterator, Tuple

BLOCK_BITS = 22
BLOCK_SIZE = 1 << BLOCK_BITS
BLOCK_MASK = BLOCK_SIZE - 1


def block_count(fsize: int) -> int:
    return (fsize + BLOCK_MASK) >> BLOCK_BITS


def block_offset(blk_idx: int) -> int:
    return blk_idx << BLOCK_BITS


def block_size(blk_idx: int, fsize: int) -> int:
    """Size of block ``blk_idx``; the last block holds the remainder."""
    if blk_idx == block_count(fsize) - 1:
        return fsize - block_offset(blk_idx)
    return BLOCK_SIZE


def block_ranges(fsize: int) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(index, offset, size)`` for every block of a ``fsize``-byte file."""
    for idx in range(block_count(fsize)):
        yield idx, block_offset(idx), block_size(idx, fsize)
