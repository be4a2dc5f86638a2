"""Consumer-facing agent events.

Payloads:
    job:new        (job: JobSpec)
    job:claimed    (job_id: str)
    job:submitted  (submission: JobSubmission)
    job:completed  (job_id: str)
    job:paid       (job_id: str, payment_tx_id: str | None)
    error          (error: Exception)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

JOB_NEW = "job:new"
JOB_CLAIMED = "job:claimed"
JOB_SUBMITTED = "job:submitted"
JOB_COMPLETED = "job:completed"
JOB_PAID = "job:paid"
ERROR = "error"

EVENTS = frozenset({JOB_NEW, JOB_CLAIMED, JOB_SUBMITTED, JOB_COMPLETED, JOB_PAID, ERROR})

Handler = Callable[..., Awaitable[None] | None]


class EventEmitter:
    """Dispatches agent events to registered handlers.

    Handlers may be plain functions or coroutines. A handler that raises is
    logged and skipped; the remaining handlers still run.

    Example:
        >>> @agent.on("job:new")
        ... async def handle(job):
        ...     await agent.claim_job(job.job_id)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    @staticmethod
    def _check(event: str) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}")

    def on(self, event: str, handler: Handler | None = None) -> Any:
        """Register a handler. Usable directly or as a decorator."""
        self._check(event)

        def register(fn: Handler) -> Handler:
            self._handlers.setdefault(event, []).append(fn)
            return fn

        if handler is None:
            return register
        return register(handler)

    def once(self, event: str, handler: Handler) -> Handler:
        """Register a handler that is removed after its first call."""

        async def wrapper(*args: Any) -> None:
            self.off(event, wrapper)
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result

        self.on(event, wrapper)
        return wrapper

    def off(self, event: str, handler: Handler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        self._check(event)
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: str, *args: Any) -> None:
        """Call every handler registered for ``event`` in registration order."""
        self._check(event)
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("event_handler_failed", event_name=event, error=str(e))
