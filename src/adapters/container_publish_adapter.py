"""
Container-publish adapter (photo/video sharing).
The platform pulls the media from a public URL into a container; publishing
the container creates the post. No bytes are streamed from here.
"""
import logging
from typing import List, Optional
from src.adapters.base import ChunkResult, PlatformAdapter
from src.core import config
from src.core.exceptions import ProtocolException, ValidationException
from src.models.upload_session import (
    ChunkRange,
    ContainerHandle,
    FileMetadata,
    Platform,
    PublishOptions,
    RemoteHandle
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = {'photo': 'PHOTO', 'video': 'VIDEO', 'reel': 'REELS'}

# Items per carousel post accepted by the Graph API
CAROUSEL_MIN_ITEMS = 2
CAROUSEL_MAX_ITEMS = 10


class CarouselItem:
    """One child of a multi-item post."""

    def __init__(self, source_url: str, media_type: str = 'photo'):
        self.source_url = source_url
        self.media_type = media_type

    def __repr__(self):
        return f"CarouselItem(media_type={self.media_type}, source_url={self.source_url})"


class ContainerPublishAdapter(PlatformAdapter):

    platform = Platform.INSTAGRAM
    handle_type = ContainerHandle
    ordered_chunks = False
    streams_bytes = False

    def __init__(self, client, graph_api_base_url: Optional[str] = None, account_id: Optional[str] = None):
        super().__init__(client)
        self.graph_api_base_url = (graph_api_base_url or config.settings.graph_api_base_url).rstrip('/')
        self.account_id = account_id or config.settings.instagram_business_account_id

    @property
    def media_url(self) -> str:
        return f"{self.graph_api_base_url}/{self.account_id}/media"

    @property
    def publish_url(self) -> str:
        return f"{self.graph_api_base_url}/{self.account_id}/media_publish"

    async def open(self, credential: str, file_metadata: FileMetadata, publish_options: PublishOptions) -> RemoteHandle:
        """
        Create a media container that references file_metadata.source_url.

        Raises:
            ValidationException: If the file has no public URL yet
            AuthException, TransientNetworkException, ProtocolException
        """
        if not file_metadata.source_url:
            raise ValidationException("A publicly reachable source URL is required before container creation")

        media_type = self._media_type(file_metadata, publish_options)
        params = {'media_type': MEDIA_TYPES[media_type], 'access_token': credential}
        params['video_url' if media_type in ('video', 'reel') else 'image_url'] = file_metadata.source_url
        if publish_options.caption:
            params['caption'] = publish_options.caption

        container_id = await self._create_container(params, 'container creation')
        logger.info("%s container created: %s", self.platform.value, container_id)
        return ContainerHandle(container_id=container_id)

    async def open_carousel(self, credential: str, items: List[CarouselItem], publish_options: PublishOptions) -> ContainerHandle:
        """
        Create one container per item, then a parent container listing them.

        Raises:
            ValidationException: If the item count is out of bounds or a media type is unknown
            AuthException, TransientNetworkException, ProtocolException
        """
        if not CAROUSEL_MIN_ITEMS <= len(items) <= CAROUSEL_MAX_ITEMS:
            raise ValidationException(
                f"A carousel needs {CAROUSEL_MIN_ITEMS} to {CAROUSEL_MAX_ITEMS} items, got {len(items)}"
            )

        children = []
        for position, item in enumerate(items):
            if item.media_type not in ('photo', 'video'):
                raise ValidationException(f"Unsupported carousel media type: {item.media_type}")
            params = {
                'media_type': MEDIA_TYPES[item.media_type],
                'is_carousel_item': 'true',
                'access_token': credential
            }
            params['video_url' if item.media_type == 'video' else 'image_url'] = item.source_url
            children.append(await self._create_container(params, f"carousel item {position} creation"))

        params = {'media_type': 'CAROUSEL', 'children': ','.join(children), 'access_token': credential}
        if publish_options.caption:
            params['caption'] = publish_options.caption

        container_id = await self._create_container(params, 'carousel creation')
        logger.info("%s carousel container created: %s (%d items)", self.platform.value, container_id, len(children))
        return ContainerHandle(container_id=container_id, children=children)

    async def send_chunk(self, credential: str, handle: RemoteHandle, chunk: ChunkRange, data: bytes, total_size: int) -> ChunkResult:
        """The platform fetches the media itself; chunks are acknowledged without I/O."""
        self.narrow(handle)
        return ChunkResult(accepted=True, finished=False)

    async def finalize(self, credential: str, handle: RemoteHandle, publish_options: PublishOptions, total_size: int) -> str:
        """
        Publish the container, optionally with caption and location.

        Returns:
            The published media id
        """
        handle = self.narrow(handle)
        params = {'creation_id': handle.container_id, 'access_token': credential}
        if publish_options.caption:
            params['caption'] = publish_options.caption
        if publish_options.location_id:
            params['location_id'] = publish_options.location_id

        response = await self._request('POST', self.publish_url, 'publish', data=params)
        self._raise_for_status(response, 'publish')

        media_id = self._json(response, 'publish').get('id')
        if not media_id:
            raise ProtocolException(f"{self.platform.value} publish returned no media id")

        logger.info("%s media published: %s", self.platform.value, media_id)
        return media_id

    async def _create_container(self, params: dict, action: str) -> str:
        response = await self._request('POST', self.media_url, action, data=params)
        self._raise_for_status(response, action)

        container_id = self._json(response, action).get('id')
        if not container_id:
            raise ProtocolException(f"{self.platform.value} {action} returned no container id")
        return container_id

    @staticmethod
    def _media_type(file_metadata: FileMetadata, publish_options: PublishOptions) -> str:
        if publish_options.media_type:
            media_type = publish_options.media_type.lower()
            if media_type not in MEDIA_TYPES:
                raise ValidationException(f"Unsupported media type: {publish_options.media_type}")
            return media_type
        if (file_metadata.mime_type or '').startswith('video/'):
            return 'video'
        return 'photo'
