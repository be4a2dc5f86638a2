"""Job notification stream.

A background task reads the coordinator's Server-Sent Events feed of newly
posted jobs and hands each job to a queue and to ``job:new`` handlers.

Delivery is at-least-once and unordered. Jobs are de-duplicated by id, so a
notification means "this job exists", not "this is the next job".
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import OrderedDict
from collections.abc import Callable

import httpx
import structlog
from pydantic import ValidationError

from .events import ERROR, JOB_NEW, EventEmitter
from .exceptions import (
    AuthError,
    NetworkError,
    NotRegisteredError,
    WorkmeshError,
    error_for_status,
    error_message,
)
from .retry import ReconnectPolicy
from .types import JobFilter, JobSpec

logger = structlog.get_logger(__name__)

_END = object()


class JobStream:
    """Cancellable producer of :class:`JobSpec` values.

    Iterate it to consume jobs; the iteration ends once the stream is closed,
    either explicitly or after a transport failure.

    Without a reconnect policy a failed or finished connection emits
    ``error`` and ends the stream. With one, the stream resubscribes using
    the same filter and the agent's current credential.

    Example:
        >>> stream = await agent.subscribe_to_jobs(JobFilter(skills=["ocr"]))
        >>> async for job in stream:
        ...     await agent.claim_job(job.job_id)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        emitter: EventEmitter,
        auth_headers: Callable[[], dict[str, str]],
        job_filter: JobFilter | None = None,
        reconnect: ReconnectPolicy | None = None,
        max_buffer: int = 1000,
        max_seen: int = 10_000,
    ):
        """Initialize the stream. Call :meth:`start` to connect.

        Args:
            client: HTTP client bound to the coordinator
            emitter: Receives ``job:new`` and ``error`` events
            auth_headers: Returns the bearer header for each (re)connection
            job_filter: Filter sent as query parameters
            reconnect: Optional resubscription policy
            max_buffer: Jobs held for the iterator before the oldest is dropped
            max_seen: Job ids remembered for de-duplication; the least
                recently seen id is forgotten beyond this
        """
        self._client = client
        self._emitter = emitter
        self._auth_headers = auth_headers
        self.job_filter = job_filter or JobFilter()
        self._reconnect = reconnect
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffer)
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._max_seen = max_seen
        self._task: asyncio.Task | None = None
        self._closed = False
        self._ended = False
        self._attempt = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def seen_job_ids(self) -> frozenset[str]:
        """Ids of the distinct jobs delivered most recently (up to ``max_seen``)."""
        return frozenset(self._seen)

    def start(self) -> JobStream:
        """Start the background listener task."""
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run(), name="workmesh-job-stream")
        return self

    async def close(self) -> None:
        """Stop listening and end iteration. Idempotent.

        In-flight claim or submit calls on the same agent are unaffected.
        """
        self._closed = True
        # Called from a handler running inside the listener task: the
        # listener sees _closed and stops on its own.
        own_task = self._task is asyncio.current_task()
        if self._task is not None and not self._task.done() and not own_task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._finish()

    async def __aenter__(self) -> JobStream:
        return self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __aiter__(self) -> JobStream:
        return self

    async def __anext__(self) -> JobSpec:
        item = await self._queue.get()
        if item is _END:
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item

    async def _run(self) -> None:
        try:
            while not self._closed:
                try:
                    await self._listen()
                    error: WorkmeshError = NetworkError("Job stream ended by coordinator")
                except WorkmeshError as e:
                    error = e
                except httpx.HTTPError as e:
                    error = NetworkError(f"Job stream failed: {e}")

                if self._closed:
                    break

                logger.warning("job_stream_error", error=str(error))
                await self._emitter.emit(ERROR, error)
                if self._closed:
                    break

                # A rejected credential needs re-registration, not a retry.
                if self._reconnect is None or isinstance(error, (AuthError, NotRegisteredError)):
                    break
                self._attempt += 1
                if not self._reconnect.should_retry(self._attempt):
                    logger.warning("job_stream_gave_up", attempts=self._attempt)
                    break
                delay = self._reconnect.delay(self._attempt)
                logger.info("job_stream_reconnecting", attempt=self._attempt, delay=delay)
                await asyncio.sleep(delay)
        finally:
            self._closed = True
            self._finish()

    def _finish(self) -> None:
        if self._ended:
            return
        self._ended = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)

    async def _listen(self) -> None:
        headers = {**self._auth_headers(), "Accept": "text/event-stream"}
        async with self._client.stream(
            "GET",
            "/jobs/stream",
            params=self.job_filter.to_query_params(),
            headers=headers,
            timeout=httpx.Timeout(self._client.timeout.connect, read=None),
        ) as response:
            if not response.is_success:
                await response.aread()
                raise error_for_status(response.status_code, error_message(response))

            logger.info("job_stream_connected", filter=self.job_filter.to_query_params())

            event_type = ""
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if not line:
                    if data_lines and event_type in ("", "message"):
                        await self._dispatch("\n".join(data_lines))
                        if self._closed:
                            return
                    event_type, data_lines = "", []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field == "data":
                    data_lines.append(value)
                elif field == "event":
                    event_type = value

    async def _dispatch(self, data: str) -> None:
        if self._closed:
            return
        try:
            job = JobSpec.model_validate_json(data)
        except ValidationError as e:
            logger.warning("job_notification_invalid", error=str(e))
            await self._emitter.emit(ERROR, WorkmeshError(f"Malformed job notification: {e}"))
            return

        if not self.job_filter.matches(job):
            logger.debug("job_notification_filtered", job_id=job.job_id)
            return

        if job.job_id in self._seen:
            self._seen.move_to_end(job.job_id)
            logger.debug("job_notification_duplicate", job_id=job.job_id)
            return
        self._seen[job.job_id] = None
        if len(self._seen) > self._max_seen:
            self._seen.popitem(last=False)

        # A connection that delivers new jobs counts as healthy.
        self._attempt = 0

        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning("job_stream_buffer_full", dropped_job_id=dropped.job_id)
        self._queue.put_nowait(job)
        await self._emitter.emit(JOB_NEW, job)
