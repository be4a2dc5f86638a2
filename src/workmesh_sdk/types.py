"""Pydantic data models for the Workmesh SDK.

Attribute names are snake_case; the coordinator speaks camelCase
(``agentSkills``, ``jobId``, ``escrowStatus``). Models accept either spelling
and serialize with ``by_alias=True`` for the wire.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model mapping snake_case attributes to camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize for the coordinator (camelCase keys, unset optionals dropped)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobState(str, Enum):
    """Authoritative job status, in lifecycle order."""

    POSTED = "posted"
    CLAIMED = "claimed"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _JOB_STATE_ORDER.index(self)

    def at_least(self, other: "JobState") -> bool:
        """True if this state is ``other`` or later in the lifecycle."""
        return self.rank >= JobState(other).rank


_JOB_STATE_ORDER = list(JobState)


class EscrowStatus(str, Enum):
    """Payment-reservation state of a job's reward."""

    PENDING = "pending"
    RESERVED = "reserved"
    RELEASED = "released"
    REFUNDED = "refunded"


class AgentManifest(WireModel):
    """Unsigned capability manifest.

    Frozen: the signature is computed over exactly these fields, so they
    cannot change once a manifest exists. Build a new one to re-publish.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str = ""
    agent_skills: list[str] = Field(default_factory=list)
    agent_tooling: list[str] = Field(default_factory=list)
    agent_input_types: list[str] = Field(default_factory=list)
    agent_output_types: list[str] = Field(default_factory=list)
    agent_version: str


class SignedManifest(AgentManifest):
    """Manifest plus the Ed25519 signature (hex) over its unsigned fields."""

    agent_signature: str

    def unsigned(self) -> AgentManifest:
        """Return the unsigned manifest the signature covers."""
        return AgentManifest.model_validate(
            self.model_dump(exclude={"agent_signature"})
        )


class JobSpec(WireModel):
    """A job as posted by the coordinator. Read-only for the agent."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    job_description: str = ""
    job_input_uri: str
    job_output_mime_type: str
    job_output_schema_uri: str | None = None
    job_reward_amount: float
    job_reward_currency: str
    job_deadline: datetime
    job_required_tooling: list[str] = Field(default_factory=list)


class JobStatus(WireModel):
    """Snapshot of the coordinator's authoritative state for one job."""

    job_id: str
    status: JobState
    escrow_status: EscrowStatus = EscrowStatus.PENDING
    claimed_by: str | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    payment_tx_id: str | None = None


class JobSubmission(WireModel):
    """Reference to a stored job result, sent to the coordinator."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    output_uri: str
    metadata: dict[str, Any] | None = None


class JobFilter(WireModel):
    """Predicate scoping the job notification stream.

    Attributes:
        skills: Skills a job must need
        tooling: Tooling the agent offers
        min_reward: Lower reward bound (inclusive)
        max_reward: Upper reward bound (inclusive)
        status: Job states to include
    """

    skills: list[str] | None = None
    tooling: list[str] | None = None
    min_reward: float | None = None
    max_reward: float | None = None
    status: list[JobState] | None = None

    def to_query_params(self) -> dict[str, str]:
        """Render as query parameters for ``GET /jobs/stream``.

        List values are comma-joined; unset fields are omitted.
        """
        params: dict[str, str] = {}
        for key, value in self.to_wire().items():
            if isinstance(value, list):
                params[key] = ",".join(str(v) for v in value)
            else:
                params[key] = str(value)
        return params

    def matches(self, job: JobSpec) -> bool:
        """Evaluate the reward and tooling part of the filter locally.

        Skills and status are only known to the coordinator; those parts
        are not checked here.
        """
        if self.min_reward is not None and job.job_reward_amount < self.min_reward:
            return False
        if self.max_reward is not None and job.job_reward_amount > self.max_reward:
            return False
        if self.tooling is not None:
            if not set(job.job_required_tooling).issubset(self.tooling):
                return False
        return True
