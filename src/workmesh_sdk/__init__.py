"""Workmesh SDK - Python agent client for the Workmesh job marketplace.

Example:
    >>> from workmesh_sdk import WorkmeshAgent, AgentManifest, JobFilter
    >>> agent = WorkmeshAgent(coordinator_url="http://localhost:8080",
    ...                       agent_signing_key="9d61b19d...")
    >>> await agent.register()
    >>> await agent.publish_manifest(AgentManifest(agent_skills=["ocr"], agent_version="1.0.0"))
    >>> stream = await agent.subscribe_to_jobs(JobFilter(skills=["ocr"]))
"""

from .client import WorkmeshAgent
from .config import AgentConfig
from .identity import (
    canonicalize,
    derive_public_identity,
    sign,
    sign_manifest,
    verify,
    verify_manifest,
)
from .retry import ReconnectPolicy
from .storage import ContentStore
from .stream import JobStream
from .types import (
    AgentManifest,
    EscrowStatus,
    JobFilter,
    JobSpec,
    JobState,
    JobStatus,
    JobSubmission,
    SignedManifest,
)
from .exceptions import (
    WorkmeshError,
    NotRegisteredError,
    AuthError,
    ConflictError,
    NotFoundError,
    CoordinatorError,
    NetworkError,
    RequestTimeoutError,
    SigningKeyError,
    StorageError,
)

__version__ = "0.1.0"

__all__ = [
    "WorkmeshAgent",
    "AgentConfig",
    "ContentStore",
    "JobStream",
    "ReconnectPolicy",
    "AgentManifest",
    "SignedManifest",
    "JobSpec",
    "JobState",
    "JobStatus",
    "EscrowStatus",
    "JobSubmission",
    "JobFilter",
    "canonicalize",
    "derive_public_identity",
    "sign",
    "sign_manifest",
    "verify",
    "verify_manifest",
    "WorkmeshError",
    "NotRegisteredError",
    "AuthError",
    "ConflictError",
    "NotFoundError",
    "CoordinatorError",
    "NetworkError",
    "RequestTimeoutError",
    "SigningKeyError",
    "StorageError",
]
