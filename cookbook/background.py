"""Fire-and-forget background work queue."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from .cancel import CancellationToken

logger = logging.getLogger(__name__)

WorkItem = Callable[[CancellationToken], None]


class BackgroundWorker:
    """Single-threaded worker that executes queued jobs in order.

    Jobs receive the worker's cancellation token, which is requested when the
    worker stops. A failing job is logged and never stops the worker loop.
    """

    def __init__(self, name: str = "cookbook-background-worker") -> None:
        self._name = name
        self._queue: "queue.Queue[Optional[WorkItem]]" = queue.Queue()
        self._token = CancellationToken()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run_loop, name=self._name, daemon=True)
            self._thread.start()

    def queue_background_work(self, work: WorkItem) -> None:
        self.start()
        self._queue.put(work)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued job has finished.

        Returns ``False`` when ``timeout`` elapsed first.
        """

        # task_done() notifies this condition when the last job finishes
        with self._queue.all_tasks_done:
            return self._queue.all_tasks_done.wait_for(
                lambda: self._queue.unfinished_tasks == 0, timeout
            )

    def stop(self, timeout: float = 5.0) -> None:
        self._token.request_cancel()
        thread = self._thread
        if thread is None:
            return
        self._queue.put(None)
        thread.join(timeout=timeout)

    def _run_loop(self) -> None:
        while True:
            work = self._queue.get()
            try:
                if work is None:
                    return
                if self._token.cancelled:
                    logger.info("Skipping queued work; worker is stopping")
                    continue
                work(self._token)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Background work item failed")
            finally:
                self._queue.task_done()
