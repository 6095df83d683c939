"""
INIT / APPEND / FINALIZE adapter (microblogging).
Every step is a command POSTed to the same media upload endpoint.
"""
import logging
from typing import Optional
from src.adapters.base import ChunkResult, PlatformAdapter
from src.core import config
from src.core.exceptions import ProtocolException
from src.models.upload_session import (
    ChunkRange,
    FileMetadata,
    MediaIdHandle,
    Platform,
    PublishOptions,
    RemoteHandle
)

logger = logging.getLogger(__name__)


class InitAppendFinalizeAdapter(PlatformAdapter):
    """APPENDs carry a segment index and must arrive in order; FINALIZE is explicit."""

    platform = Platform.X
    handle_type = MediaIdHandle
    ordered_chunks = True

    def __init__(self, client, upload_url: Optional[str] = None):
        super().__init__(client)
        self.upload_url = upload_url or config.settings.x_media_upload_url

    async def open(self, credential: str, file_metadata: FileMetadata, publish_options: PublishOptions) -> RemoteHandle:
        """
        INIT command; returns the media id that addresses later commands.

        Raises:
            AuthException, TransientNetworkException, ProtocolException
        """
        is_video = self._is_video(file_metadata, publish_options)
        form = {
            'command': 'INIT',
            'total_bytes': str(file_metadata.total_size),
            'media_type': file_metadata.mime_type or ('video/mp4' if is_video else 'image/jpeg'),
            'media_category': 'tweet_video' if is_video else 'tweet_image'
        }

        response = await self._request('POST', self.upload_url, 'INIT', data=form, headers=self._bearer(credential))
        self._raise_for_status(response, 'INIT')

        media_id = self._json(response, 'INIT').get('media_id_string')
        if not media_id:
            raise ProtocolException(f"{self.platform.value} INIT returned no media id")

        logger.info("%s media upload initialized, media_id: %s", self.platform.value, media_id)
        return MediaIdHandle(media_id=media_id)

    async def send_chunk(self, credential: str, handle: RemoteHandle, chunk: ChunkRange, data: bytes, total_size: int) -> ChunkResult:
        handle = self.narrow(handle)
        form = {
            'command': 'APPEND',
            'media_id': handle.media_id,
            'segment_index': str(chunk.index)
        }
        files = {'media': ('blob', data, 'application/octet-stream')}

        response = await self._request(
            'POST', self.upload_url, f"APPEND segment {chunk.index}",
            data=form, files=files, headers=self._bearer(credential)
        )
        self._raise_for_status(response, f"APPEND segment {chunk.index}")
        return ChunkResult(accepted=True, finished=False)

    async def finalize(self, credential: str, handle: RemoteHandle, publish_options: PublishOptions, total_size: int) -> str:
        handle = self.narrow(handle)
        form = {'command': 'FINALIZE', 'media_id': handle.media_id}

        response = await self._request('POST', self.upload_url, 'FINALIZE', data=form, headers=self._bearer(credential))
        self._raise_for_status(response, 'FINALIZE')

        logger.info("%s media upload finalized: %s", self.platform.value, handle.media_id)
        return handle.media_id

    @staticmethod
    def _is_video(file_metadata: FileMetadata, publish_options: PublishOptions) -> bool:
        if publish_options.media_type:
            return publish_options.media_type.lower() == 'video'
        return (file_metadata.mime_type or 'video/').startswith('video/')
