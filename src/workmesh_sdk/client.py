"""WorkmeshAgent client for interacting with a Workmesh coordinator."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from .config import AgentConfig
from .events import (
    ERROR,
    JOB_CLAIMED,
    JOB_COMPLETED,
    JOB_PAID,
    JOB_SUBMITTED,
    EventEmitter,
)
from .exceptions import (
    AuthError,
    ConflictError,
    CoordinatorError,
    NetworkError,
    NotRegisteredError,
    RequestTimeoutError,
    WorkmeshError,
    error_for_status,
    error_message,
)
from .identity import derive_public_identity, load_signing_key, sign_manifest
from .lifecycle import JobTracker, is_settled
from .retry import ReconnectPolicy
from .storage import ContentStore
from .stream import JobStream
from .types import (
    AgentManifest,
    JobFilter,
    JobState,
    JobStatus,
    JobSubmission,
    SignedManifest,
)

logger = structlog.get_logger(__name__)


class WorkmeshAgent(EventEmitter):
    """Client for a Workmesh coordinator.

    One instance is one agent: it owns the signing key, the session token
    issued at registration, and the local snapshots of the jobs it touches.
    Several agents can live in one process.

    Every failure of a coordinator or storage call is raised to the caller
    and also emitted as an ``error`` event. ``NotRegisteredError`` is only
    raised; it is detected locally and no request is made.

    Example:
        >>> config = AgentConfig(coordinator_url="http://localhost:8080",
        ...                      agent_signing_key="9d61b19d...")
        >>> async with WorkmeshAgent(config) as agent:
        ...     await agent.register()
        ...     await agent.publish_manifest(AgentManifest(
        ...         agent_skills=["ocr"], agent_version="1.0.0"))
        ...     stream = await agent.subscribe_to_jobs(JobFilter(skills=["ocr"]))
        ...     async for job in stream:
        ...         await agent.claim_job(job.job_id)
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        store: ContentStore | None = None,
        **settings: Any,
    ):
        """Initialize the client.

        Args:
            config: Agent configuration. Built from ``settings`` and
                    ``WORKMESH_*`` environment variables when omitted.
            transport: Optional httpx transport for coordinator calls
            store: Content store for outputs (defaults to the configured
                   IPFS gateway)
            **settings: ``AgentConfig`` fields, when ``config`` is omitted

        Raises:
            SigningKeyError: The configured signing key is malformed
        """
        super().__init__()
        self.config = config or AgentConfig(**settings)
        self._signing_key = load_signing_key(
            self.config.agent_signing_key.get_secret_value()
        )
        self._public_id = derive_public_identity(self._signing_key)
        self._client = httpx.AsyncClient(
            base_url=self.config.coordinator_url,
            timeout=self.config.request_timeout,
            transport=transport,
        )
        self._store = store or ContentStore(
            self.config.ipfs_gateway, timeout=self.config.request_timeout
        )
        self._token: str | None = None
        self._manifest: SignedManifest | None = None
        self._jobs = JobTracker()
        self._streams: list[JobStream] = []

    async def __aenter__(self):
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close streams and HTTP clients."""
        await self.close()

    async def close(self):
        """Close open job streams and the HTTP clients."""
        for stream in self._streams:
            await stream.close()
        self._streams.clear()
        await self._client.aclose()
        await self._store.close()

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @property
    def public_id(self) -> str:
        """The agent's public identity (hex Ed25519 public key)."""
        return self._public_id

    @property
    def is_registered(self) -> bool:
        """Check if the agent holds a session token.

        Returns:
            True if registered, False otherwise
        """
        return self._token is not None

    @property
    def manifest(self) -> SignedManifest | None:
        """The last manifest successfully published."""
        return self._manifest

    def ensure_registered(self) -> None:
        """Raise unless a session token is held.

        Raises:
            NotRegisteredError: Agent is not registered
        """
        if self._token is None:
            raise NotRegisteredError("Agent is not registered. Call register() first.")

    def _auth_headers(self) -> dict[str, str]:
        self.ensure_registered()
        return {"Authorization": f"Bearer {self._token}"}

    async def _fail(self, error: WorkmeshError) -> WorkmeshError:
        """Emit ``error`` for a failure about to be raised to the caller."""
        await self.emit(ERROR, error)
        return error

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
        job_id: str | None = None,
        changes_state: bool = False,
    ) -> dict[str, Any]:
        """Make an HTTP request to the coordinator and handle errors.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Endpoint path
            json: JSON body for POST requests
            params: Query parameters
            authenticated: Attach the bearer token
            job_id: Job the request concerns, for error context
            changes_state: A timeout leaves the job's state uncertain

        Returns:
            Response JSON (empty dict for an empty body)

        Raises:
            NotRegisteredError: Authenticated call without a token
            AuthError: Credential or identity rejected (401/403)
            NotFoundError: Job not found (404)
            ConflictError: Transition rejected (409/410)
            RequestTimeoutError: Request timed out
            NetworkError: Cannot connect to coordinator
            CoordinatorError: Other errors, or a body that is not a JSON object
        """
        headers = self._auth_headers() if authenticated else None

        try:
            response = await self._client.request(
                method=method,
                url=path,
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise await self._fail(
                RequestTimeoutError(f"Request timeout: {e}", outcome_uncertain=changes_state)
            ) from e
        except httpx.HTTPError as e:
            raise await self._fail(NetworkError(f"Cannot connect to coordinator: {e}")) from e

        if not response.is_success:
            raise await self._fail(
                error_for_status(response.status_code, error_message(response), job_id)
            )

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise await self._fail(
                CoordinatorError("Coordinator returned invalid JSON", response.status_code)
            ) from e
        if not isinstance(body, dict):
            raise await self._fail(
                CoordinatorError(
                    "Coordinator returned an unexpected response body", response.status_code
                )
            )
        return body

    async def register(self) -> str:
        """Register the agent's public identity and obtain a session token.

        Calling it again re-registers; the old token is dropped first, so a
        failed attempt leaves the agent unregistered.

        Returns:
            The session token

        Raises:
            AuthError: Coordinator rejected the identity
            CoordinatorError: Malformed registration response
            NetworkError: Cannot connect to coordinator
        """
        self._token = None

        response = await self._request(
            "POST",
            "/agents/register",
            json={"publicKey": self.public_id},
            authenticated=False,
        )

        token = response.get("token")
        if not token:
            raise await self._fail(AuthError("Coordinator issued no session token"))

        self._token = token
        logger.info("agent_registered", agent_id=self.public_id)
        return token

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    async def publish_manifest(self, manifest: AgentManifest) -> SignedManifest:
        """Sign and publish the agent's capability manifest.

        Each call signs afresh, so re-publish whenever capabilities change.

        Args:
            manifest: Unsigned manifest. An empty ``agent_id`` is set to
                      this agent's public identity.

        Returns:
            The signed manifest as published

        Raises:
            NotRegisteredError: Agent is not registered
            SigningKeyError: ``agent_id`` names a different identity
            AuthError: Coordinator rejected the signature or token
        """
        self.ensure_registered()

        try:
            signed = sign_manifest(manifest, self._signing_key)
        except WorkmeshError as e:
            raise await self._fail(e)

        await self._request("POST", "/agents/manifest", json=signed.to_wire())

        self._manifest = signed
        logger.info(
            "manifest_published",
            agent_id=signed.agent_id,
            version=signed.agent_version,
            skills=signed.agent_skills,
        )
        return signed

    # -------------------------------------------------------------------------
    # Job Methods
    # -------------------------------------------------------------------------

    async def subscribe_to_jobs(
        self,
        job_filter: JobFilter | None = None,
        reconnect: ReconnectPolicy | None = None,
    ) -> JobStream:
        """Open the notification stream of newly posted jobs.

        Jobs arrive as ``job:new`` events and by iterating the returned
        stream. Without ``reconnect``, a transport failure emits ``error``
        and ends the stream; subscribe again to resume.

        Args:
            job_filter: Restrict notifications to matching jobs
            reconnect: Resubscribe with backoff after failures

        Returns:
            The running stream. Close it explicitly when done.

        Raises:
            NotRegisteredError: Agent is not registered
        """
        self.ensure_registered()

        stream = JobStream(
            self._client,
            self,
            self._auth_headers,
            job_filter=job_filter,
            reconnect=reconnect,
        )
        self._streams = [s for s in self._streams if not s.closed]
        self._streams.append(stream)
        return stream.start()

    async def claim_job(self, job_id: str) -> None:
        """Claim exclusive assignment of a posted job.

        The coordinator decides races: the first valid claim wins.

        Args:
            job_id: Job to claim

        Raises:
            NotRegisteredError: Agent is not registered
            ConflictError: Job already claimed or past its deadline;
                           move on to another job
            RequestTimeoutError: Outcome unknown; call resolve_claim()
                                 rather than claiming again
        """
        self.ensure_registered()

        try:
            await self._request(
                "POST",
                f"/jobs/{job_id}/claim",
                json={},
                job_id=job_id,
                changes_state=True,
            )
        except ConflictError as e:
            logger.info("job_claim_rejected", job_id=job_id, reason=str(e))
            raise

        self._jobs.mark(job_id, JobState.CLAIMED, claimed_by=self.public_id)
        logger.info("job_claimed", job_id=job_id)
        await self.emit(JOB_CLAIMED, job_id)

    async def resolve_claim(self, job_id: str) -> bool:
        """Find out whether an uncertain claim went through.

        Use after a claim timed out: re-read the job's status instead of
        assuming either outcome.

        Returns:
            True if the coordinator records this agent as the claimant
        """
        status = await self.get_job_status(job_id)
        return status.status.at_least(JobState.CLAIMED) and status.claimed_by == self.public_id

    async def submit_job(self, submission: JobSubmission) -> None:
        """Submit the result of a claimed job.

        The output must already be in content-addressed storage; see
        upload() or submit_output().

        Args:
            submission: Job id plus the output's content reference

        Raises:
            NotRegisteredError: Agent is not registered
            ConflictError: Job not claimed by this agent, already
                           submitted, or past its deadline
            RequestTimeoutError: Outcome unknown; check get_job_status()
        """
        self.ensure_registered()

        await self._request(
            "POST",
            f"/jobs/{submission.job_id}/submit",
            json=submission.to_wire(),
            job_id=submission.job_id,
            changes_state=True,
        )

        self._jobs.mark(submission.job_id, JobState.SUBMITTED)
        logger.info("job_submitted", job_id=submission.job_id, output_uri=submission.output_uri)
        await self.emit(JOB_SUBMITTED, submission)

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Read the coordinator's current state for a job.

        Always safe to call. Newly observed completion or payment is
        emitted as ``job:completed`` / ``job:paid``. A claim by this agent
        that was not confirmed by claim_job() (it timed out) is emitted as
        ``job:claimed`` once seen here.

        Raises:
            NotRegisteredError: Agent is not registered
            NotFoundError: Job not found
        """
        self.ensure_registered()

        response = await self._request("GET", f"/jobs/{job_id}/status", job_id=job_id)
        try:
            status = JobStatus.model_validate(response)
        except ValidationError as e:
            raise await self._fail(CoordinatorError(f"Invalid job status: {e}")) from e

        entered = self._jobs.observe(status)
        if JobState.CLAIMED in entered and status.claimed_by == self.public_id:
            logger.info("job_claimed", job_id=job_id)
            await self.emit(JOB_CLAIMED, job_id)
        if JobState.COMPLETED in entered:
            logger.info("job_completed", job_id=job_id)
            await self.emit(JOB_COMPLETED, job_id)
        if JobState.PAID in entered:
            logger.info("job_paid", job_id=job_id, payment_tx_id=status.payment_tx_id)
            await self.emit(JOB_PAID, job_id, status.payment_tx_id)
        return status

    def job_snapshot(self, job_id: str) -> JobStatus | None:
        """Last locally known status of a job, without a request. May be stale."""
        return self._jobs.get(job_id)

    async def wait_for_settlement(
        self,
        job_id: str,
        interval: float = 5.0,
        timeout: float | None = None,
    ) -> JobStatus:
        """Poll a job's status until its reward is paid out or refunded.

        Args:
            job_id: Job to watch
            interval: Seconds between status reads
            timeout: Give up after this many seconds

        Returns:
            The settled status

        Raises:
            asyncio.TimeoutError: Not settled within ``timeout``
        """

        async def poll() -> JobStatus:
            while True:
                status = await self.get_job_status(job_id)
                if is_settled(status):
                    return status
                await asyncio.sleep(interval)

        return await asyncio.wait_for(poll(), timeout)

    # -------------------------------------------------------------------------
    # Storage Methods
    # -------------------------------------------------------------------------

    async def upload(self, data: bytes) -> str:
        """Store a job output and return its content reference.

        Raises:
            NetworkError: Storage gateway unreachable
            StorageError: Upload rejected
        """
        try:
            return await self._store.put(data)
        except WorkmeshError as e:
            raise await self._fail(e)

    async def submit_output(
        self,
        job_id: str,
        data: bytes,
        metadata: dict[str, Any] | None = None,
    ) -> JobSubmission:
        """Upload an output, then submit its reference for the job.

        Returns:
            The submission sent to the coordinator

        Raises:
            NotRegisteredError: Agent is not registered (nothing is uploaded)
        """
        self.ensure_registered()

        output_uri = await self.upload(data)
        submission = JobSubmission(job_id=job_id, output_uri=output_uri, metadata=metadata)
        await self.submit_job(submission)
        return submission
