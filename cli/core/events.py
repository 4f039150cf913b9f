"""In-process pub/sub for deployment logs and status changes."""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cli.models.deployment import DeploymentStatus

if TYPE_CHECKING:
    from cli.core.store import DeploymentStore

logger = logging.getLogger(__name__)

# Subscribe with this key to receive log lines from every deployment.
ALL_DEPLOYMENTS = "*"


@dataclass(frozen=True)
class Event:
    kind: str  # "log" or "status"
    deployment_id: str
    line: str | None = None
    status: DeploymentStatus | None = None
    # Length of the persisted log after this line was appended.
    offset: int | None = None


class Subscription:
    """A live listener registered on an :class:`EventBus`.

    Use as a context manager, or call :meth:`close`, so the registration is
    released on every exit path.
    """

    def __init__(self, bus: EventBus, key: str, maxsize: int) -> None:
        self._bus = bus
        self.key = key
        self._queue: queue.Queue[Event] = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # Slow consumer; the line is still in the persisted log.
            self.dropped += 1

    def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None if *timeout* elapses first."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def get_nowait(self) -> Event | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AsyncSubscription(Subscription):
    """A subscription read from an asyncio event loop.

    Publisher threads hand events to the loop with ``call_soon_threadsafe``,
    so a waiting reader holds no worker thread.
    """

    def __init__(
        self, bus: EventBus, key: str, maxsize: int, loop: asyncio.AbstractEventLoop
    ) -> None:
        super().__init__(bus, key, maxsize)
        self._loop = loop
        self._aqueue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)

    def _offer(self, event: Event) -> None:
        try:
            self._loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed; the reader is gone.
            self.dropped += 1

    def _put(self, event: Event) -> None:
        try:
            self._aqueue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    async def aget(self, timeout: float | None = None) -> Event | None:
        """Next event, or None if *timeout* elapses first."""
        try:
            return await asyncio.wait_for(self._aqueue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class EventBus:
    """Fans out log lines and status changes to subscribers by deployment id.

    The build thread calls ``publish_log()`` / ``publish_status()``; the CLI
    follower calls ``subscribe()`` and the SSE transport ``subscribe_async()``.
    Publishing holds a single lock so that the persisted order and the
    delivery order of lines for one deployment always agree.  Queues are
    bounded and never block the publisher.
    """

    def __init__(self, store: DeploymentStore | None = None, *, queue_size: int = 1000) -> None:
        self._store = store
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}

    def publish_log(self, deployment_id: str, line: str) -> None:
        with self._lock:
            offset = None
            if self._store is not None:
                offset = self._store.append_log(deployment_id, line)
                if offset is None:
                    logger.debug("Dropped log line for sealed deployment %s", deployment_id)
                    return
            event = Event("log", deployment_id, line=line, offset=offset)
            for sub in self._targets(deployment_id, include_wildcard=True):
                sub._offer(event)

    def publish_status(self, deployment_id: str, status: DeploymentStatus) -> None:
        with self._lock:
            event = Event("status", deployment_id, status=DeploymentStatus(status))
            for sub in self._targets(deployment_id, include_wildcard=False):
                sub._offer(event)

    def subscribe(self, deployment_id: str) -> Subscription:
        sub = Subscription(self, deployment_id, self._queue_size)
        self._register(sub)
        return sub

    def subscribe_async(self, deployment_id: str) -> AsyncSubscription:
        """Subscribe from a coroutine; events arrive on the running loop."""
        loop = asyncio.get_running_loop()
        sub = AsyncSubscription(self, deployment_id, self._queue_size, loop)
        self._register(sub)
        return sub

    def _register(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.setdefault(sub.key, []).append(sub)

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub.closed:
                return
            sub.closed = True
            subs = self._subscribers.get(sub.key)
            if not subs:
                return
            remaining = [s for s in subs if s is not sub]
            if remaining:
                self._subscribers[sub.key] = remaining
            else:
                self._subscribers.pop(sub.key, None)

    def subscriber_count(self, deployment_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(deployment_id, []))

    def _targets(self, deployment_id: str, *, include_wildcard: bool) -> list[Subscription]:
        targets = list(self._subscribers.get(deployment_id, []))
        if include_wildcard and deployment_id != ALL_DEPLOYMENTS:
            targets.extend(self._subscribers.get(ALL_DEPLOYMENTS, []))
        return targets
