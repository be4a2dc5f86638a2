"""Agent configuration.

Supplied once at construction. Anything not passed explicitly is read from
``WORKMESH_*`` environment variables, e.g. ``WORKMESH_COORDINATOR_URL``.
"""

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentConfig(BaseSettings):
    """Settings for a single agent instance.

    Attributes:
        coordinator_url: Base URL of the Workmesh coordinator
        agent_signing_key: Ed25519 private key seed, hex encoded
        ipfs_gateway: IPFS HTTP API used to store job outputs
        request_timeout: Timeout in seconds for request/response calls
    """

    model_config = SettingsConfigDict(env_prefix="WORKMESH_", frozen=True)

    coordinator_url: str
    agent_signing_key: SecretStr
    ipfs_gateway: str = "http://localhost:5001"
    request_timeout: float = 30.0

    @field_validator("coordinator_url", "ipfs_gateway")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
