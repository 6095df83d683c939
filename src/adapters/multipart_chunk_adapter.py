"""
Multipart chunk adapter (short video).
Declares the chunk layout up front, then POSTs each chunk as form data.
"""
import logging
from typing import Optional
from src.adapters.base import ChunkResult, PlatformAdapter
from src.core import config
from src.core.exceptions import ProtocolException
from src.models.upload_session import (
    ChunkRange,
    FileMetadata,
    MultipartUploadHandle,
    Platform,
    PublishOptions,
    RemoteHandle
)

logger = logging.getLogger(__name__)


class MultipartChunkAdapter(PlatformAdapter):
    """Chunks are keyed by index, so they may arrive in any order. Completion is implicit."""

    platform = Platform.TIKTOK
    handle_type = MultipartUploadHandle
    ordered_chunks = False

    def __init__(self, client, init_url: Optional[str] = None):
        super().__init__(client)
        self.init_url = init_url or config.settings.tiktok_upload_init_url

    async def open(self, credential: str, file_metadata: FileMetadata, publish_options: PublishOptions) -> RemoteHandle:
        """
        Declare total size, chunk size and chunk count; returns upload URL and id.

        Raises:
            AuthException, TransientNetworkException, ProtocolException
        """
        chunk_size = file_metadata.chunk_size or config.settings.chunk_size_bytes
        body = {
            'source_info': {
                'source': 'FILE_UPLOAD',
                'video_size': file_metadata.total_size,
                'chunk_size': chunk_size,
                'total_chunk_count': -(-file_metadata.total_size // chunk_size)
            }
        }

        response = await self._request(
            'POST', self.init_url, 'upload initialization', json=body, headers=self._bearer(credential)
        )
        self._raise_for_status(response, 'upload initialization')

        data = self._json(response, 'upload initialization').get('data') or {}
        upload_url = data.get('upload_url')
        upload_id = data.get('upload_id')
        if not upload_url or not upload_id:
            raise ProtocolException(f"{self.platform.value} upload initialization returned no upload URL or id")

        return MultipartUploadHandle(upload_url=upload_url, upload_id=upload_id)

    async def send_chunk(self, credential: str, handle: RemoteHandle, chunk: ChunkRange, data: bytes, total_size: int) -> ChunkResult:
        handle = self.narrow(handle)
        form = {'upload_id': handle.upload_id, 'chunk_index': str(chunk.index)}
        files = {'chunk_data': ('blob', data, 'application/octet-stream')}

        response = await self._request('POST', handle.upload_url, f"chunk {chunk.index} upload", data=form, files=files)
        self._raise_for_status(response, f"chunk {chunk.index} upload")
        return ChunkResult(accepted=True, finished=False)

    async def finalize(self, credential: str, handle: RemoteHandle, publish_options: PublishOptions, total_size: int) -> str:
        """The platform assembles the video once every chunk is accepted."""
        handle = self.narrow(handle)
        return handle.upload_id
