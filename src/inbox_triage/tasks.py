"""
Best-effort background work.

``TaskDispatcher`` runs fire-and-forget callables on a bounded thread pool.
There is no delivery guarantee: a task may be lost if the process exits, and
a failing task never affects its caller. Every failure is logged with the
task name so it leaves a trace.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

import structlog


logger = structlog.get_logger(__name__)


class TaskDispatcher:
    """Thread-pool backed dispatcher for detached tasks."""

    def __init__(self, max_workers: int = 4, name: str = "background"):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._shutdown = False
        self._lock = threading.Lock()

    def dispatch(self, task_name: str, func: Callable[..., Any], *args, **kwargs) -> Optional[Future]:
        """
        Submit ``func`` for background execution.

        Returns:
            The Future, or None if the dispatcher is shut down (task dropped)
        """
        with self._lock:
            if self._shutdown:
                logger.warning("background_task_dropped", task=task_name, reason="dispatcher_shut_down")
                return None
            future = self._executor.submit(func, *args, **kwargs)

        future.add_done_callback(lambda f: self._log_outcome(task_name, f))
        return future

    @staticmethod
    def _log_outcome(task_name: str, future: Future) -> None:
        if future.cancelled():
            logger.warning("background_task_cancelled", task=task_name)
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "background_task_failed",
                task=task_name,
                error=str(error),
                error_type=type(error).__name__,
            )

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("background_dispatcher_shut_down", dispatcher=self.name)


class InlineDispatcher(TaskDispatcher):
    """Runs tasks synchronously in the caller's thread, still logging failures."""

    def __init__(self):
        self.name = "inline"

    def dispatch(self, task_name: str, func: Callable[..., Any], *args, **kwargs) -> Optional[Future]:
        future: Future = Future()
        try:
            future.set_result(func(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        self._log_outcome(task_name, future)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None
