"""K8s watcher feeding the work queue."""

from __future__ import annotations

import asyncio
import contextlib
from asyncio import CancelledError, Task
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx
import kr8s

from runner_controller.app_config import logging
from runner_controller.k8s.models import GVK, controller_owner_name
from runner_controller.k8s.queue import ObjectKey, WorkQueue

logger = logging.getLogger(__name__)


type EventHandler = Callable[[GVK, str, dict[str, Any]], Awaitable[None]]


class GenerationChangedFilter:
    """Only let through changes that affect the generation of an object.

    Additions and deletions always pass. Modifications pass only when `metadata.generation` differs from the last
    one seen, so status updates and objects without a generation (secrets, config maps) do not trigger a pass.
    """

    def __init__(self) -> None:
        self.__generations: dict[tuple[GVK, str, str], int | None] = {}

    def accept(self, gvk: GVK, event_type: str, manifest: dict[str, Any]) -> bool:
        """Whether the event should be forwarded."""
        metadata = manifest.get("metadata") or {}
        key = (gvk, metadata.get("namespace", ""), metadata.get("name", ""))
        generation = metadata.get("generation")
        match event_type:
            case "DELETED":
                self.__generations.pop(key, None)
                return True
            case "MODIFIED":
                seen = key in self.__generations
                previous = self.__generations.get(key)
                self.__generations[key] = generation
                return not seen or previous != generation
            case _:
                self.__generations[key] = generation
                return True


def enqueue_handler(queue: WorkQueue, owner: GVK) -> EventHandler:
    """Map events for the owner kind and its children to the key of the owning object."""
    predicate = GenerationChangedFilter()

    async def handler(gvk: GVK, event_type: str, manifest: dict[str, Any]) -> None:
        if not predicate.accept(gvk, event_type, manifest):
            return
        metadata = manifest.get("metadata") or {}
        namespace = metadata.get("namespace")
        if not namespace:
            return
        name = metadata.get("name") if gvk == owner else controller_owner_name(manifest, owner.kind)
        if name is None:
            return
        queue.add(ObjectKey(namespace=namespace, name=name))

    return handler


class K8sWatcher:
    """Watch k8s events and call the handler with every event."""

    def __init__(
        self,
        handler: EventHandler,
        api: kr8s.asyncio.Api,
        kinds: list[GVK],
        namespace: str | None = None,
        retry_delay: timedelta = timedelta(seconds=10),
    ) -> None:
        self.__handler = handler
        self.__api = api
        self.__kinds = kinds
        # kr8s watches all namespaces with the special value `all`
        self.__namespace = namespace if namespace is not None else kr8s.ALL
        self.__retry_delay = retry_delay
        self.__watch_tasks: list[Task] = []

    async def __watch_kind(self, kind: GVK) -> None:
        logger.info(f"Watching kind {kind} in namespace {self.__namespace}")
        while True:
            try:
                watch = self.__api.async_watch(kind=kind.kr8s_kind, namespace=self.__namespace)
                async for event_type, obj in watch:
                    await self.__handler(kind, event_type, obj.to_dict())
            except httpx.ReadError:
                # This can happen occasionally - most likely means that the k8s cluster stopped the connection
                logger.warning(f"Encountered HTTP ReadError, will try to immediately restart the watch for {kind}.")
                continue
            except Exception as e:
                logger.error(f"watch loop failed for {kind}", exc_info=e)

            # Add a sleep to prevent retrying in a loop the same action instantly.
            await asyncio.sleep(self.__retry_delay.total_seconds())

    async def start(self) -> None:
        """Start the watcher."""
        for kind in self.__kinds:
            self.__watch_tasks.append(asyncio.create_task(self.__watch_kind(kind)))

    async def wait(self) -> None:
        """Wait for all tasks.

        This is mainly used to block the main function.
        """
        await asyncio.gather(*self.__watch_tasks)

    async def stop(self, timeout: timedelta = timedelta(seconds=10)) -> None:
        """Stop the watcher or timeout."""
        for task in self.__watch_tasks:
            await stop_task(task, timeout)


async def stop_task(task: Task, timeout: timedelta) -> None:
    """Cancel a task and wait for it to finish."""
    if task.done():
        return
    task.cancel()
    try:
        async with asyncio.timeout(timeout.total_seconds()):
            with contextlib.suppress(CancelledError):
                await task
    except TimeoutError:
        logger.error(f"timeout trying to cancel task {task.get_name()}")
