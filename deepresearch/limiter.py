import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyBudget:
    """FIFO limiter shared by every node of one research tree.

    ``effective_capacity`` is always ``nominal_capacity`` plus the number of
    recursive parents currently waiting on a subtree. A parent that blocks on
    its own descendants while holding a slot lends that slot back through
    :meth:`inflated`, so the tree keeps ``nominal_capacity`` slots for work that
    can actually make progress.

    Counters are only touched on the event loop thread and never across an
    ``await``, so concurrent callers cannot lose an update.
    """

    def __init__(self, capacity: int = 2) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._nominal = capacity
        self._effective = capacity
        self._parents = 0
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def nominal_capacity(self) -> int:
        return self._nominal

    @property
    def effective_capacity(self) -> int:
        return self._effective

    @property
    def active_recursive_parents(self) -> int:
        return self._parents

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def snapshot(self) -> Dict[str, int]:
        return {
            "nominal_capacity": self._nominal,
            "effective_capacity": self._effective,
            "active_recursive_parents": self._parents,
            "active": self._active,
            "pending": self.pending_count,
        }

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        await self._acquire()
        try:
            return await func(*args, **kwargs)
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._active < self._effective and not self._waiters:
            self._active += 1
            return
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Slot was handed over just before cancellation; give it back.
                self._release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def _release(self) -> None:
        self._active -= 1
        self._wake()

    def _wake(self) -> None:
        while self._waiters and self._active < self._effective:
            fut = self._waiters.popleft()
            if fut.done():
                continue
            self._active += 1
            fut.set_result(None)

    def raise_capacity_temporarily(self) -> None:
        self._effective += 1
        self._parents += 1
        self._wake()

    def restore_capacity(self) -> None:
        if self._parents <= 0:
            raise RuntimeError("restore_capacity called without a matching raise")
        self._effective -= 1
        self._parents -= 1

    @asynccontextmanager
    async def inflated(self) -> AsyncIterator["ConcurrencyBudget"]:
        """Lend one extra slot to a recursive subtree for the duration of the block."""
        self.raise_capacity_temporarily()
        try:
            yield self
        finally:
            self.restore_capacity()

    def set_nominal_capacity(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if capacity == self._nominal:
            return
        diff = capacity - self._nominal
        logger.info(
            "Updating concurrency from %s to %s. Current effective concurrency: %s",
            self._nominal,
            capacity,
            self._effective,
        )
        self._nominal = capacity
        self._effective += diff
        self._wake()
