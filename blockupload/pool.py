"""
Fixed-width worker pool draining a bounded task queue.

Submitting blocks once the queue is full, which is the only backpressure the
uploader applies. Workers are daemon threads and the pool is never shut down.
"""

import logging
import queue
import threading
from typing import Callable, List, Optional

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class WorkerPool:
    def __init__(self, workers: int, task_qsize: int, name: str = "blockupload") -> None:
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}.")
        if task_qsize < 1:
            raise ValueError(f"task_qsize must be at least 1, got {task_qsize}.")
        self.workers = workers
        self.task_qsize = task_qsize
        self._tasks: "queue.Queue[Task]" = queue.Queue(maxsize=task_qsize)
        self._threads: List[threading.Thread] = []
        for i in range(workers):
            t = threading.Thread(target=self._worker, name=f"{name}-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.debug(f"Started {workers} worker(s), queue size {task_qsize}.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerPool":
        settings = settings.with_defaults()
        return cls(settings.workers, settings.task_qsize)

    def submit(self, task: Task) -> None:
        """Queue ``task``; blocks while the queue is full."""
        self._tasks.put(task)

    def _worker(self) -> None:
        while True:
            task = self._tasks.get()
            try:
                task()
            except Exception:
                logger.exception("Worker task raised")
            finally:
                self._tasks.task_done()


_default_pool: Optional[WorkerPool] = None
_default_pool_lock = threading.Lock()


def default_pool() -> WorkerPool:
    """Return the process-wide pool, creating it from the current settings once."""
    global _default_pool
    with _default_pool_lock:
        if _default_pool is None:
            _default_pool = WorkerPool.from_settings(get_settings())
        return _default_pool
