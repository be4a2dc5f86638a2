"""Content-addressed storage for job outputs, via the IPFS HTTP API."""

import httpx
import structlog

from .exceptions import NetworkError, StorageError

logger = structlog.get_logger(__name__)

IPFS_SCHEME = "ipfs://"


def cid_from_uri(uri: str) -> str:
    """Strip the ``ipfs://`` scheme from a content reference."""
    cid = uri[len(IPFS_SCHEME):] if uri.startswith(IPFS_SCHEME) else uri
    if not cid:
        raise ValueError(f"Empty content reference: {uri!r}")
    return cid


class ContentStore:
    """Client for an IPFS node's HTTP API (``/api/v0``).

    Example:
        >>> async with ContentStore("http://localhost:5001") as store:
        ...     uri = await store.put(b"result")
        >>> uri
        'ipfs://bafkrei...'
    """

    def __init__(
        self,
        gateway_url: str = "http://localhost:5001",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the store.

        Args:
            gateway_url: Base URL of the IPFS HTTP API
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._client = httpx.AsyncClient(
            base_url=gateway_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Storage request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Cannot reach storage gateway: {e}") from e

        if not response.is_success:
            raise StorageError(f"Storage gateway returned HTTP {response.status_code}")
        return response

    async def put(self, data: bytes) -> str:
        """Store bytes and return their content reference (``ipfs://<cid>``).

        Raises:
            NetworkError: Gateway unreachable
            StorageError: Gateway rejected the upload
        """
        response = await self._post(
            "/api/v0/add",
            params={"cid-version": "1", "pin": "true"},
            files={"file": ("output", data)},
        )
        cid = response.json().get("Hash")
        if not cid:
            raise StorageError("Storage gateway returned no content hash")

        logger.debug("content_stored", cid=cid, size=len(data))
        return f"{IPFS_SCHEME}{cid}"

    async def get(self, reference: str) -> bytes:
        """Fetch the bytes behind a content reference.

        Raises:
            NetworkError: Gateway unreachable
            StorageError: Content not available
        """
        response = await self._post("/api/v0/cat", params={"arg": cid_from_uri(reference)})
        return response.content
