"""
Resumable PUT adapter (video hosting).
Opens a session with a metadata POST, then PUTs byte ranges to the session URL.
"""
import logging
from typing import Optional
from src.adapters.base import ChunkResult, PlatformAdapter
from src.core import config
from src.core.exceptions import ProtocolException
from src.models.upload_session import (
    ChunkRange,
    FileMetadata,
    Platform,
    PublishOptions,
    RemoteHandle,
    ResumableUploadHandle
)

logger = logging.getLogger(__name__)

RESUME_INCOMPLETE = 308
DEFAULT_CATEGORY_ID = '22'
DEFAULT_PRIVACY_STATUS = 'private'


class ResumablePutAdapter(PlatformAdapter):
    """
    308 means the range was stored and more is expected; 200/201 means the
    platform assembled the asset and the body carries its id.
    """

    platform = Platform.YOUTUBE
    handle_type = ResumableUploadHandle
    ordered_chunks = True

    def __init__(self, client, upload_url: Optional[str] = None):
        super().__init__(client)
        self.upload_url = upload_url or config.settings.youtube_upload_url

    async def open(self, credential: str, file_metadata: FileMetadata, publish_options: PublishOptions) -> RemoteHandle:
        """
        Create the resumable session and read its URL from the Location header.

        Raises:
            AuthException, TransientNetworkException, ProtocolException
        """
        body = {
            'snippet': {
                'title': publish_options.title or file_metadata.file_name,
                'description': publish_options.description or '',
                'tags': publish_options.tags,
                'categoryId': publish_options.category_id or DEFAULT_CATEGORY_ID
            },
            'status': {
                'privacyStatus': publish_options.privacy_status or DEFAULT_PRIVACY_STATUS
            }
        }
        headers = {
            **self._bearer(credential),
            'X-Upload-Content-Length': str(file_metadata.total_size),
            'X-Upload-Content-Type': file_metadata.mime_type or 'video/*'
        }

        response = await self._request('POST', self.upload_url, 'upload initialization', json=body, headers=headers)
        self._raise_for_status(response, 'upload initialization')

        session_url = response.headers.get('location')
        if not session_url:
            raise ProtocolException(f"{self.platform.value} upload URL not received")

        return ResumableUploadHandle(upload_url=session_url)

    async def send_chunk(self, credential: str, handle: RemoteHandle, chunk: ChunkRange, data: bytes, total_size: int) -> ChunkResult:
        handle = self.narrow(handle)
        headers = {
            **self._bearer(credential),
            'Content-Length': str(chunk.size),
            'Content-Range': chunk.content_range(total_size)
        }

        response = await self._request('PUT', handle.upload_url, f"chunk {chunk.index} upload", content=data, headers=headers)

        if response.status_code == RESUME_INCOMPLETE:
            return ChunkResult(accepted=True, finished=False)
        if response.status_code in (200, 201):
            asset_id = self._json(response, f"chunk {chunk.index} upload").get('id')
            if not asset_id:
                raise ProtocolException(f"{self.platform.value} upload completed without an asset id")
            logger.info("%s upload completed: %s", self.platform.value, asset_id)
            return ChunkResult(accepted=True, finished=True, remote_asset_id=asset_id)

        self._raise_for_status(response, f"chunk {chunk.index} upload")
        raise ProtocolException(
            f"{self.platform.value} chunk {chunk.index} upload returned unexpected status {response.status_code}",
            status_code=response.status_code
        )

    async def finalize(self, credential: str, handle: RemoteHandle, publish_options: PublishOptions, total_size: int) -> str:
        """
        No separate finalize exists; query the session for the asset id.

        Used only when the final 200 was lost, e.g. across a restart.
        """
        handle = self.narrow(handle)
        headers = {**self._bearer(credential), 'Content-Range': f"bytes */{total_size}"}
        response = await self._request('PUT', handle.upload_url, 'status query', headers=headers)

        if response.status_code in (200, 201):
            asset_id = self._json(response, 'status query').get('id')
            if asset_id:
                return asset_id
        if response.status_code == RESUME_INCOMPLETE:
            raise ProtocolException(f"{self.platform.value} upload is incomplete on the remote side")

        self._raise_for_status(response, 'status query')
        raise ProtocolException(f"{self.platform.value} status query returned no asset id")
