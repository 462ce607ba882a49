"""Bounded parallel iteration with cooperative cancellation."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional, TypeVar

from .cancel import CancellationToken, CancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parallel_for_each(
    items: Iterable[T],
    action: Callable[[T, CancellationToken], None],
    max_parallelism: int,
    cancellation: Optional[CancellationToken] = None,
) -> None:
    """Run ``action`` for every item on at most ``max_parallelism`` threads.

    Items that have not started once ``cancellation`` is requested are
    skipped; calls already in flight are left to observe the token on their
    own. The first exception raised by ``action`` cancels the remaining
    items and is re-raised once every started call has returned.
    """

    pending: List[T] = list(items)
    if not pending:
        return

    token = CancellationToken.linked(cancellation)

    def _run(item: T) -> None:
        if token.cancelled:
            return
        try:
            action(item, token)
        except CancelledError:
            logger.debug("Parallel item cancelled")
        except Exception:
            # stop items queued behind this one before the caller sees the error
            token.request_cancel()
            raise

    first_error: Optional[BaseException] = None
    workers = max(1, min(max_parallelism, len(pending)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(_run, item) for item in pending]
        for future in as_completed(futures):
            if future.cancelled():
                continue
            error = future.exception()
            if error is not None and first_error is None:
                first_error = error
                token.request_cancel()
                for other in futures:
                    other.cancel()

    if first_error is not None:
        raise first_error
