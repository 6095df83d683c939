"""
Base class for platform upload adapters.
Each adapter speaks one platform's resumable upload protocol over httpx and
reports failures with the shared error taxonomy.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar
import httpx
from src.core.exceptions import AuthException, ProtocolException, TransientNetworkException
from src.models.upload_session import ChunkRange, FileMetadata, Platform, PublishOptions, RemoteHandle

logger = logging.getLogger(__name__)

H = TypeVar("H", bound=RemoteHandle)


class ChunkResult:
    """Outcome of one acknowledged chunk transmission."""

    def __init__(self, accepted: bool, finished: bool = False, remote_asset_id: Optional[str] = None):
        self.accepted = accepted
        self.finished = finished
        self.remote_asset_id = remote_asset_id

    def __repr__(self):
        return f"ChunkResult(accepted={self.accepted}, finished={self.finished}, remote_asset_id={self.remote_asset_id})"


class PlatformAdapter(ABC):
    """Uniform open / send_chunk / finalize contract over a platform protocol."""

    platform: Platform
    handle_type: Type[RemoteHandle] = RemoteHandle
    # Chunk sends for one session must be serialized
    ordered_chunks: bool = True
    # False when the platform pulls the file itself
    streams_bytes: bool = True

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abstractmethod
    async def open(self, credential: str, file_metadata: FileMetadata, publish_options: PublishOptions) -> RemoteHandle:
        """Open a remote upload channel and return its handle."""
        pass

    @abstractmethod
    async def send_chunk(self, credential: str, handle: RemoteHandle, chunk: ChunkRange, data: bytes, total_size: int) -> ChunkResult:
        """Transmit one chunk; identical ranges may be re-sent safely."""
        pass

    @abstractmethod
    async def finalize(self, credential: str, handle: RemoteHandle, publish_options: PublishOptions, total_size: int) -> str:
        """Turn the uploaded bytes into a remote asset and return its id."""
        pass

    async def abort(self, credential: Optional[str], handle: RemoteHandle) -> None:
        """Release remote resources, best-effort. Most platforms expire partial uploads on their own."""
        return None

    def narrow(self, handle: RemoteHandle, handle_type: Optional[Type[H]] = None) -> H:
        """Check that handle belongs to this adapter's platform."""
        expected = handle_type or self.handle_type
        if not isinstance(handle, expected):
            raise ProtocolException(
                f"{self.platform.value} adapter cannot use remote handle {type(handle).__name__}"
            )
        return handle

    async def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        """
        Issue an HTTP request, mapping transport failures to TransientNetworkException.

        Status codes are left for the caller to interpret.
        """
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkException(f"{self.platform.value} {action} timed out: {str(e)}") from e
        except httpx.TransportError as e:
            raise TransientNetworkException(f"{self.platform.value} {action} failed: {str(e)}") from e

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        """Map a non-success status to the error taxonomy."""
        status = response.status_code
        if 200 <= status < 300:
            return

        detail = self._error_detail(response)
        message = f"{self.platform.value} {action} failed: {status}"
        if detail:
            message = f"{message} ({detail})"

        if status in (401, 403):
            raise AuthException(message)
        if status == 429 or status >= 500:
            raise TransientNetworkException(message, status_code=status)
        raise ProtocolException(message, status_code=status)

    def _json(self, response: httpx.Response, action: str) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolException(f"{self.platform.value} {action} returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise ProtocolException(f"{self.platform.value} {action} returned an unexpected body")
        return body

    @staticmethod
    def _bearer(credential: str) -> dict:
        return {'Authorization': f"Bearer {credential}"}

    @staticmethod
    def _error_detail(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            error = body.get('error')
            if isinstance(error, dict):
                return error.get('message')
            if isinstance(error, str):
                return error
        return None
