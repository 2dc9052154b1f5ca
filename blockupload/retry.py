"""Bounded retry loop with no delay between attempts."""

from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def retry_call(
    attempt: Callable[[], T],
    try_times: int,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """Call ``attempt`` up to ``try_times`` times and return its first result.

    ``on_retry(n, exc)`` runs after failed attempt ``n`` when another attempt
    follows. The exception of the last attempt is re-raised.
    """
    if try_times < 1:
        raise ValueError(f"try_times must be at least 1, got {try_times}.")

    for n in range(1, try_times + 1):
        try:
            return attempt()
        except Exception as exc:
            if n == try_times:
                raise
            if on_retry is not None:
                on_retry(n, exc)
    raise AssertionError("unreachable")
