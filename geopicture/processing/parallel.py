"""Data-parallel loops over disjoint index ranges with cooperative cancellation."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from geopicture.errors import OperationCancelledError

# Rows/columns handed to one task; small enough to keep cancellation responsive.
DEFAULT_BAND_SIZE = 64


class CancellationToken:
    """Thread-safe flag polled by long-running loops."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


def bands(count: int, band_size: int = DEFAULT_BAND_SIZE) -> list[tuple[int, int]]:
    """Split ``range(count)`` into consecutive ``(start, stop)`` bands."""
    band_size = max(1, band_size)
    return [(start, min(start + band_size, count)) for start in range(0, count, band_size)]


def parallel_for(
    count: int,
    body: Callable[[int, int], None],
    *,
    token: Optional[CancellationToken] = None,
    max_workers: Optional[int] = None,
    band_size: int = DEFAULT_BAND_SIZE,
) -> None:
    """Run ``body(start, stop)`` over bands of ``range(count)``.

    Bands must write disjoint regions.  The token is checked before each band;
    a cancellation raises ``OperationCancelledError`` once all started bands
    have returned, so the caller never publishes a partial result.
    """
    check_cancelled(token)
    work = bands(count, band_size)
    if not work:
        return

    def run(band: tuple[int, int]) -> None:
        check_cancelled(token)
        body(*band)

    if len(work) == 1 or max_workers == 1:
        for band in work:
            run(band)
        return

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(run, band) for band in work]
        errors = [f.exception() for f in futures]
    for exc in errors:
        if exc is not None:
            raise exc
    check_cancelled(token)
