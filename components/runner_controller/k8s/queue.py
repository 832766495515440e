"""Work queue serializing reconcile passes.

The queue coalesces keys: a key that is already waiting to be processed is only processed once, and a key that is
added while it is being processed is processed again afterwards. Delayed keys keep the earliest requested wake-up,
an immediate add does not cancel a pending delayed one. Failed keys are retried with an exponential backoff.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from runner_controller.app_config import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectKey:
    """Identifies the object a reconcile pass is run for."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


type ReconcileFunc = Callable[[ObjectKey], Awaitable[timedelta | None]]


class WorkQueue:
    """A rate limited, delaying work queue in the style of the client-go work queues."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self.__ready: deque[ObjectKey] = deque()
        self.__queued: set[ObjectKey] = set()
        self.__processing: set[ObjectKey] = set()
        self.__dirty: set[ObjectKey] = set()
        self.__waiting: dict[ObjectKey, float] = {}
        self.__failures: dict[ObjectKey, int] = {}
        self.__wakeup = asyncio.Event()
        self.base_delay = base_delay
        self.max_delay = max_delay

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def __len__(self) -> int:
        return len(self.__ready)

    def add(self, key: ObjectKey) -> None:
        """Mark the key as ready to be processed."""
        if key in self.__processing:
            self.__dirty.add(key)
            return
        if key in self.__queued:
            return
        self.__queued.add(key)
        self.__ready.append(key)
        self.__wakeup.set()

    def add_after(self, key: ObjectKey, delay: timedelta) -> None:
        """Add the key once the delay has passed, delays that are not positive add it right away."""
        seconds = delay.total_seconds()
        if seconds <= 0:
            self.add(key)
            return
        at = self._now() + seconds
        current = self.__waiting.get(key)
        if current is None or at < current:
            self.__waiting[key] = at
            self.__wakeup.set()

    def add_rate_limited(self, key: ObjectKey) -> None:
        """Add the key after the backoff delay for its number of consecutive failures."""
        failures = self.__failures.get(key, 0)
        self.__failures[key] = failures + 1
        delay = min(self.base_delay * 2**failures, self.max_delay)
        self.add_after(key, timedelta(seconds=delay))

    def forget(self, key: ObjectKey) -> None:
        """Reset the backoff of the key."""
        self.__failures.pop(key, None)

    def failures(self, key: ObjectKey) -> int:
        """Number of consecutive failures recorded for the key."""
        return self.__failures.get(key, 0)

    def done(self, key: ObjectKey) -> None:
        """Mark the processing of the key as finished."""
        self.__processing.discard(key)
        if key in self.__dirty:
            self.__dirty.discard(key)
            self.add(key)

    def _promote_due(self) -> float | None:
        """Move due delayed keys to the ready queue and return the seconds until the next wake-up."""
        now = self._now()
        for key, at in list(self.__waiting.items()):
            if at <= now:
                del self.__waiting[key]
                self.add(key)
        if not self.__waiting:
            return None
        return max(min(self.__waiting.values()) - now, 0)

    async def get(self) -> ObjectKey:
        """Wait for the next ready key and mark it as being processed."""
        while True:
            timeout = self._promote_due()
            if self.__ready:
                key = self.__ready.popleft()
                self.__queued.discard(key)
                self.__processing.add(key)
                return key
            self.__wakeup.clear()
            with contextlib.suppress(TimeoutError):
                async with asyncio.timeout(timeout):
                    await self.__wakeup.wait()


async def process_next(queue: WorkQueue, reconcile: ReconcileFunc) -> None:
    """Run a single reconcile pass for the next key of the queue."""
    key = await queue.get()
    try:
        requeue_after = await reconcile(key)
    except Exception as e:
        logger.error(f"Reconciling {key} failed, retrying with backoff", exc_info=e)
        queue.add_rate_limited(key)
    else:
        queue.forget(key)
        if requeue_after is not None:
            logger.debug(f"Requeueing {key} after {requeue_after}")
            queue.add_after(key, requeue_after)
    finally:
        queue.done(key)


async def run_worker(queue: WorkQueue, reconcile: ReconcileFunc) -> None:
    """Process the queue forever with a single worker, so passes never overlap."""
    while True:
        await process_next(queue, reconcile)
