"""pytest configuration for workmesh-sdk tests.

Most tests run against ``FakeCoordinator`` and ``FakeIpfs``, in-process
stand-ins served through ``httpx.MockTransport``. Tests marked
``requires_coordinator`` talk to a real coordinator instead.
"""

import asyncio
import hashlib
import json
import os
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from workmesh_sdk import AgentConfig, ContentStore, WorkmeshAgent


# Default coordinator URL for testing
COORDINATOR_URL = os.environ.get("WORKMESH_COORDINATOR_URL", "http://coordinator.test")

# RFC 8032 section 7.1, test vectors 1 and 2
KEY_A = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"
PUBLIC_A = "d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a"
KEY_B = "4ccd089b28ff96da9db6c346ec114e0f5b8a319f35aba624da8cf6ed4fb8a6fb"
PUBLIC_B = "3d4017c3e843895a92b70aa74d1b7ebc9c982ccf2ec4968cc0cd55f12af4660c"


# Skip marker for tests that require a running coordinator
requires_coordinator = pytest.mark.skipif(
    not os.environ.get("WORKMESH_COORDINATOR_URL"),
    reason="Requires running Workmesh coordinator (set WORKMESH_COORDINATOR_URL)",
)


def _verify_manifest(body: dict) -> bool:
    """Verify a manifest the way a coordinator would, independently of the SDK."""
    unsigned = {k: v for k, v in body.items() if k != "agentSignature"}
    payload = json.dumps(unsigned, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(body["agentId"]))
        key.verify(bytes.fromhex(body["agentSignature"]), payload.encode("utf-8"))
    except (InvalidSignature, ValueError, KeyError):
        return False
    return True


class FakeCoordinator:
    """Minimal coordinator: registration, manifests, jobs, SSE stream."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.tokens: dict[str, str] = {}
        self.rejected_keys: set[str] = set()
        self.manifests: dict[str, dict] = {}
        self.jobs: dict[str, dict] = {}
        self.statuses: dict[str, dict] = {}
        self.stream_connections = 0
        self.stream_connected = asyncio.Event()
        self.timeout_after_claim = False
        self.unreachable = False
        self.end_streams_immediately = False
        self._listeners: list[tuple[asyncio.Queue, list[str] | None]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Test controls -----------------------------------------------------------

    def post_job(self, job_id: str, skills: list[str] | None = None, reward: float = 5.0,
                 duplicates: int = 1) -> dict:
        deadline = datetime.now(timezone.utc) + timedelta(hours=1)
        job = {
            "jobId": job_id,
            "jobDescription": f"Job {job_id}",
            "jobInputUri": f"ipfs://input-{job_id}",
            "jobOutputMimeType": "text/plain",
            "jobRewardAmount": reward,
            "jobRewardCurrency": "USDC",
            "jobDeadline": deadline.isoformat(),
            "jobRequiredTooling": [],
        }
        self.jobs[job_id] = {"spec": job, "skills": skills or []}
        self.statuses[job_id] = {"jobId": job_id, "status": "posted", "escrowStatus": "pending"}
        for queue, wanted in self._listeners:
            if self._matches(job_id, wanted):
                for _ in range(duplicates):
                    queue.put_nowait(job)
        return job

    def complete(self, job_id: str) -> None:
        self.statuses[job_id].update(
            status="completed", completedAt=datetime.now(timezone.utc).isoformat()
        )

    def pay(self, job_id: str, tx_id: str) -> None:
        self.statuses[job_id].update(status="paid", escrowStatus="released", paymentTxId=tx_id)

    def refund(self, job_id: str) -> None:
        self.statuses[job_id].update(escrowStatus="refunded")

    def push_raw(self, data: str) -> None:
        """Send an arbitrary SSE data payload to every open stream."""
        for queue, _ in self._listeners:
            queue.put_nowait(data)

    def end_streams(self) -> None:
        for queue, _ in self._listeners:
            queue.put_nowait(None)
        self._listeners.clear()

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    # Request handling --------------------------------------------------------

    def _matches(self, job_id: str, wanted: list[str] | None) -> bool:
        return wanted is None or bool(set(wanted) & set(self.jobs[job_id]["skills"]))

    def _caller(self, request: httpx.Request) -> str | None:
        auth = request.headers.get("authorization", "")
        if not auth.startswith("Bearer "):
            return None
        return self.tokens.get(auth[len("Bearer "):])

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/agents/register":
            public_key = json.loads(request.content)["publicKey"]
            if public_key in self.rejected_keys:
                return httpx.Response(403, json={"error": "identity rejected"})
            token = f"tok-{len(self.tokens) + 1}"
            self.tokens[token] = public_key
            return httpx.Response(200, json={"token": token})

        caller = self._caller(request)
        if caller is None:
            return httpx.Response(401, json={"error": "invalid token"})

        if path == "/agents/manifest":
            body = json.loads(request.content)
            if body.get("agentId") != caller or not _verify_manifest(body):
                return httpx.Response(403, json={"error": "bad manifest signature"})
            self.manifests[caller] = body
            return httpx.Response(200, json={"ok": True})

        if path == "/jobs/stream":
            return self._stream(request)

        parts = path.strip("/").split("/")
        if len(parts) != 3 or parts[0] != "jobs":
            return httpx.Response(404, json={"error": "not found"})
        job_id, action = parts[1], parts[2]
        status = self.statuses.get(job_id)
        if status is None:
            return httpx.Response(404, json={"error": f"job {job_id} not found"})

        if action == "claim":
            if status["status"] != "posted":
                return httpx.Response(409, json={"error": "job already claimed"})
            status.update(status="claimed", escrowStatus="reserved", claimedBy=caller)
            if self.timeout_after_claim:
                raise httpx.ReadTimeout("read timed out", request=request)
            return httpx.Response(200, json={})

        if action == "submit":
            if status["status"] != "claimed" or status.get("claimedBy") != caller:
                return httpx.Response(409, json={"error": "job not claimed by caller"})
            status.update(
                status="submitted",
                submittedAt=datetime.now(timezone.utc).isoformat(),
                outputUri=json.loads(request.content)["outputUri"],
            )
            return httpx.Response(200, json={})

        if action == "status":
            return httpx.Response(200, json={k: v for k, v in status.items() if k != "outputUri"})

        return httpx.Response(404, json={"error": "not found"})

    def _stream(self, request: httpx.Request) -> httpx.Response:
        self.stream_connections += 1
        skills = request.url.params.get("skills")
        wanted = skills.split(",") if skills else None
        queue: asyncio.Queue = asyncio.Queue()
        for job_id, job in self.jobs.items():
            if self.statuses[job_id]["status"] == "posted" and self._matches(job_id, wanted):
                queue.put_nowait(job["spec"])
        if self.end_streams_immediately:
            queue.put_nowait(None)
        else:
            self._listeners.append((queue, wanted))
        self.stream_connected.set()

        async def events():
            yield b": connected\n\n"
            yield b"event: heartbeat\ndata: {}\n\n"
            while True:
                job = await queue.get()
                if job is None:
                    return
                data = job if isinstance(job, str) else json.dumps(job)
                yield f"data: {data}\n\n".encode()

        return httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=events()
        )


class FakeIpfs:
    """Minimal IPFS HTTP API: /api/v0/add and /api/v0/cat."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/v0/add":
            boundary = request.headers["content-type"].split("boundary=")[1].encode()
            part = request.content.split(b"--" + boundary)[1]
            data = part.split(b"\r\n\r\n", 1)[1].rsplit(b"\r\n", 1)[0]
            cid = "bafk" + hashlib.sha256(data).hexdigest()[:32]
            self.blobs[cid] = data
            return httpx.Response(200, json={"Name": "output", "Hash": cid, "Size": str(len(data))})
        if request.url.path == "/api/v0/cat":
            cid = request.url.params["arg"]
            if cid not in self.blobs:
                return httpx.Response(500, json={"Message": "block not found"})
            return httpx.Response(200, content=self.blobs[cid])
        return httpx.Response(404)


def make_agent(coordinator: FakeCoordinator, ipfs: FakeIpfs | None = None,
               key: str = KEY_A) -> WorkmeshAgent:
    """Build an agent wired to the fakes."""
    config = AgentConfig(coordinator_url=COORDINATOR_URL, agent_signing_key=key)
    store = ContentStore(config.ipfs_gateway, transport=(ipfs or FakeIpfs()).transport)
    return WorkmeshAgent(config, transport=coordinator.transport, store=store)


@pytest.fixture
def coordinator_url():
    """Provide the coordinator URL for tests."""
    return COORDINATOR_URL


@pytest.fixture
def coordinator():
    return FakeCoordinator()


@pytest.fixture
def ipfs():
    return FakeIpfs()


@pytest.fixture
def agent(coordinator, ipfs):
    return make_agent(coordinator, ipfs)


@pytest.fixture
def rival(coordinator, ipfs):
    return make_agent(coordinator, ipfs, key=KEY_B)
