"""Background task manager with error handling and tracking.

Deferred work (such as the exclusion recompute queued after an unhide) is
scheduled here instead of through bare asyncio.create_task() calls, so
failures are always logged and outstanding tasks can be drained on shutdown.
"""

import asyncio
import logging
from typing import Awaitable, Any
from weakref import WeakSet

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Manage background tasks with error handling and tracking.

    Usage:
        task_manager = TaskManager.get_instance()

        # Fire-and-forget: errors are logged and discarded
        task_manager.create_task(
            service.recompute_for_user(user_id),
            name=f"recompute:{user_id}",
            suppress_errors=True,
        )

        # On shutdown
        await task_manager.wait_all(timeout=30)
        await task_manager.cancel_all()
    """

    _instance: "TaskManager | None" = None

    def __init__(self):
        self._tasks: WeakSet[asyncio.Task] = WeakSet()
        # Strong references until done; the event loop only keeps weak ones
        self._running: set[asyncio.Task] = set()
        self._named_tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def get_instance(cls) -> "TaskManager":
        """Get the singleton TaskManager instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    def create_task(
        self,
        coro: Awaitable[Any],
        name: str | None = None,
        suppress_errors: bool = False,
    ) -> asyncio.Task:
        """
        Create a tracked background task with error handling.

        The task starts on the next event loop iteration.

        Args:
            coro: The coroutine to run
            name: Optional name for the task (for logging and retrieval)
            suppress_errors: Log failures and resolve the task to None instead of
                re-raising, so nothing is left for an absent awaiter

        Returns:
            The created asyncio.Task
        """

        async def wrapped_coro():
            task_name = name or "unnamed"
            try:
                logger.debug(f"Starting background task: {task_name}")
                result = await coro
                logger.debug(f"Background task completed: {task_name}")
                return result
            except asyncio.CancelledError:
                logger.info(f"Background task cancelled: {task_name}")
                raise
            except Exception as e:
                logger.error(
                    f"Background task failed: {task_name} - {type(e).__name__}: {e}",
                    exc_info=True,
                )

                if suppress_errors:
                    return None
                raise

        task = asyncio.create_task(wrapped_coro(), name=name)
        self._tasks.add(task)
        self._running.add(task)
        task.add_done_callback(self._running.discard)

        if name:
            existing = self._named_tasks.get(name)
            if existing and existing.done():
                del self._named_tasks[name]
            self._named_tasks[name] = task

        return task

    def get_task(self, name: str) -> asyncio.Task | None:
        """Get a named task by name."""
        task = self._named_tasks.get(name)
        if task and task.done():
            del self._named_tasks[name]
            return None
        return task

    def get_running_tasks(self) -> list[asyncio.Task]:
        """Get all currently running (non-done) tasks."""
        return [t for t in self._running if not t.done()]

    def get_task_stats(self) -> dict:
        """Get statistics about tracked tasks."""
        all_tasks = list(self._tasks)
        running = [t for t in all_tasks if not t.done()]
        done = [t for t in all_tasks if t.done()]
        failed = [t for t in done if not t.cancelled() and t.exception() is not None]
        cancelled = [t for t in done if t.cancelled()]

        return {
            "total_tracked": len(all_tasks),
            "running": len(running),
            "completed": len(done) - len(failed) - len(cancelled),
            "failed": len(failed),
            "cancelled": len(cancelled),
            "named_tasks": [n for n, t in self._named_tasks.items() if not t.done()],
        }

    async def wait_all(self, timeout: float | None = None) -> dict:
        """
        Wait until every tracked task has finished, including tasks that
        were created by the tasks being waited on.

        Returns:
            Statistics about waited and still-pending tasks
        """
        waited = 0
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            running = self.get_running_tasks()
            if not running:
                return {"waited": waited, "pending": 0}

            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            done, pending = await asyncio.wait(running, timeout=remaining)
            waited += len(done)

            if pending and deadline is not None and loop.time() >= deadline:
                logger.warning(
                    f"{len(pending)} background tasks still running after {timeout}s"
                )
                return {"waited": waited, "pending": len(pending)}

    async def cancel_all(self, timeout: float = 5.0) -> dict:
        """
        Cancel all tracked tasks and wait for them to finish.

        Args:
            timeout: Maximum time to wait for tasks to finish

        Returns:
            Statistics about cancelled tasks
        """
        running = self.get_running_tasks()
        if not running:
            return {"cancelled": 0, "timed_out": 0}

        logger.info(f"Cancelling {len(running)} background tasks...")

        for task in running:
            task.cancel()

        done, pending = await asyncio.wait(
            running,
            timeout=timeout,
            return_when=asyncio.ALL_COMPLETED,
        )

        timed_out = len(pending)
        if timed_out > 0:
            logger.warning(
                f"{timed_out} tasks did not finish within {timeout}s timeout"
            )

        return {
            "cancelled": len(done),
            "timed_out": timed_out,
        }
