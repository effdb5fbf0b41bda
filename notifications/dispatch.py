"""In-process dispatch queue that serialises outbound notifications.

A single consumer task drains the queue in FIFO order, waiting a fixed delay
between sends so the relay is never asked for more than one message at a
time from this path. The consumer only exists while there is work; an
enqueue on an idle queue starts it, and it exits once the queue is empty.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

from .config import DEFAULT_SEND_DELAY
from .models import DeliveryResult, NotificationRequest

LOGGER = logging.getLogger(__name__)

Sender = Callable[[NotificationRequest], Awaitable[DeliveryResult]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often a retryable failure is attempted again before the item is dropped."""

    max_attempts: int = 1
    base_delay: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)


class DispatchQueue:
    def __init__(
        self,
        sender: Sender,
        *,
        send_delay: float = DEFAULT_SEND_DELAY,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self._sender = sender
        self.send_delay = send_delay
        self.retry = retry or RetryPolicy()
        self.pending: Deque[NotificationRequest] = deque()
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, request: NotificationRequest) -> None:
        """Append ``request`` and start draining if the queue was idle.

        Must be called from the event loop that owns the queue; outside a
        running loop it raises ``RuntimeError`` and queues nothing. Threads
        use :meth:`enqueue_threadsafe`. Returns immediately; use :meth:`join`
        to wait for the queue to drain.
        """
        loop = asyncio.get_running_loop()
        self.pending.append(request)
        LOGGER.debug("Queued '%s' (%d pending)", request.subject, len(self.pending))
        # No await between the check and the task creation: one consumer at most.
        if not self.is_processing:
            self._worker = loop.create_task(self._drain())

    def enqueue_threadsafe(self, request: NotificationRequest, loop: asyncio.AbstractEventLoop) -> None:
        """Hand ``request`` to the queue owned by ``loop`` from another thread."""
        if loop.is_closed():
            raise RuntimeError("Dispatch loop is closed")
        loop.call_soon_threadsafe(self.enqueue, request)

    async def join(self) -> None:
        """Wait until every queued request has been attempted."""
        while self.is_processing:
            await asyncio.shield(self._worker)

    async def shutdown(self, drain: bool = True) -> None:
        if drain:
            await self.join()
            return
        dropped = len(self.pending)
        self.pending.clear()
        if self.is_processing:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        if dropped:
            LOGGER.warning("Dispatch queue shut down with %d unsent notifications", dropped)

    async def _attempt(self, request: NotificationRequest) -> DeliveryResult:
        attempt = 1
        while True:
            result = await self._sender(request)
            if result or not getattr(result, "retryable", False) or attempt >= self.retry.max_attempts:
                return result
            delay = self.retry.delay_for(attempt)
            LOGGER.warning(
                "Retrying '%s' in %.1fs after %s failure (attempt %d/%d)",
                request.subject,
                delay,
                result.failure.value,
                attempt,
                self.retry.max_attempts,
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def _drain(self) -> None:
        try:
            while self.pending:
                request = self.pending.popleft()
                try:
                    result = await self._attempt(request)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.failed += 1
                    LOGGER.exception("Dropping queued notification '%s'", request.subject)
                else:
                    if result:
                        self.sent += 1
                    else:
                        self.failed += 1
                        LOGGER.warning(
                            "Queued notification '%s' to %s was not delivered",
                            request.subject,
                            ", ".join(request.recipients),
                        )
                await asyncio.sleep(self.send_delay)
        finally:
            self._worker = None
