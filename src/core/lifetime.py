import asyncio
from typing import Awaitable, Optional, Set

from utils.logger import get_logger

_logger = get_logger(__name__)


class ViewLifetime:
    """
    Mount-liveness for one view instance.

    Work started on behalf of the view is tracked here; ``close`` marks the
    view dead and cancels whatever is still running. Anything that commits
    state checks ``alive`` first.
    """

    def __init__(self, name: str = "view") -> None:
        self.name = name
        self._alive = True
        self._tasks: Set[asyncio.Task] = set()

    @property
    def alive(self) -> bool:
        return self._alive

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        return self.track(task)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        if not self._alive:
            task.cancel()
            return task
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error(
                f"[{self.name}] background task {task.get_name()} failed: {exc!r}",
                exc_info=exc,
            )

    def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            _logger.debug(f"[{self.name}] cancelled {len(pending)} pending task(s)")
