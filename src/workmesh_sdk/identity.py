"""Agent identity and manifest signing.

The coordinator trusts a manifest only if its signature verifies against the
public identity the agent registered with. Both sides must therefore hash the
exact same bytes: every signature in this SDK is computed over
:func:`canonicalize`, and every verification re-derives the bytes with it.

Canonical form: JSON with sorted keys, ``,`` and ``:`` separators, no
whitespace, UTF-8, no NaN/Infinity. Pydantic models are dumped by alias
with ``None`` fields dropped before serialization.
"""

import json
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from pydantic import BaseModel

from .exceptions import SigningKeyError
from .types import AgentManifest, SignedManifest

SigningKey = Ed25519PrivateKey | bytes | str

_KEY_SIZE = 32


def load_signing_key(key: SigningKey) -> Ed25519PrivateKey:
    """Load an Ed25519 private key.

    Args:
        key: A key object, 32 raw seed bytes, or the seed as hex
             (``0x`` prefix optional)

    Returns:
        The private key

    Raises:
        SigningKeyError: Key material is malformed
    """
    if isinstance(key, Ed25519PrivateKey):
        return key

    if isinstance(key, str):
        hex_key = key[2:] if key.startswith("0x") else key
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as e:
            raise SigningKeyError(f"Signing key is not valid hex: {e}") from e

    if not isinstance(key, bytes) or len(key) != _KEY_SIZE:
        raise SigningKeyError(f"Signing key must be {_KEY_SIZE} bytes")

    return Ed25519PrivateKey.from_private_bytes(key)


def derive_public_identity(key: SigningKey) -> str:
    """Derive the agent's public identifier (hex raw public key).

    Raises:
        SigningKeyError: Key material is malformed
    """
    public_key = load_signing_key(key).public_key()
    return public_key.public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def canonicalize(document: BaseModel | dict[str, Any]) -> bytes:
    """Serialize a document to its canonical signing bytes.

    Raises:
        ValueError: Document contains values JSON cannot represent exactly
    """
    if isinstance(document, BaseModel):
        document = document.model_dump(mode="json", by_alias=True, exclude_none=True)

    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def sign(document: BaseModel | dict[str, Any], key: SigningKey) -> str:
    """Sign the canonical form of a document.

    Ed25519 is deterministic: the same document and key always give the
    same signature.

    Returns:
        Hex-encoded 64-byte signature
    """
    return load_signing_key(key).sign(canonicalize(document)).hex()


def verify(
    document: BaseModel | dict[str, Any],
    signature: str,
    public_identity: str,
) -> bool:
    """Check a hex signature over a document against a public identity."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_identity))
        public_key.verify(bytes.fromhex(signature), canonicalize(document))
    except (InvalidSignature, ValueError):
        return False
    return True


def sign_manifest(manifest: AgentManifest, key: SigningKey) -> SignedManifest:
    """Sign a manifest with the agent's key.

    An empty ``agent_id`` is filled with the key's public identity before
    signing.

    Raises:
        SigningKeyError: Key is malformed or ``agent_id`` names another identity
    """
    identity = derive_public_identity(key)
    if not manifest.agent_id:
        manifest = manifest.model_copy(update={"agent_id": identity})
    elif manifest.agent_id != identity:
        raise SigningKeyError(
            f"Manifest agent_id {manifest.agent_id} does not match signing key"
        )

    # Drops any signature carried over from an earlier signing.
    unsigned = AgentManifest.model_validate(manifest.model_dump())
    return SignedManifest(
        **unsigned.model_dump(),
        agent_signature=sign(unsigned, key),
    )


def verify_manifest(manifest: SignedManifest) -> bool:
    """Verify a signed manifest against the identity it names."""
    return verify(manifest.unsigned(), manifest.agent_signature, manifest.agent_id)
