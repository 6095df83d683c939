"""
Unit tests for the platform adapters.
httpx.MockTransport stands in for the platform endpoints.
"""
import json
import httpx
import pytest
from src.adapters.container_publish_adapter import CarouselItem, ContainerPublishAdapter
from src.adapters.init_append_finalize_adapter import InitAppendFinalizeAdapter
from src.adapters.multipart_chunk_adapter import MultipartChunkAdapter
from src.adapters.registry import build_adapters
from src.adapters.resumable_put_adapter import ResumablePutAdapter
from src.core.exceptions import (
    AuthException,
    ProtocolException,
    TransientNetworkException,
    ValidationException
)
from src.models.upload_session import (
    ContainerHandle,
    FileMetadata,
    MediaIdHandle,
    MultipartUploadHandle,
    Platform,
    PublishOptions,
    ResumableUploadHandle
)
from src.services.chunk_planner import plan

YOUTUBE_URL = "https://youtube.example/upload"
SESSION_URL = "https://youtube.example/session/abc"
X_URL = "https://x.example/media/upload.json"
TIKTOK_URL = "https://tiktok.example/upload/init/"
TIKTOK_CHUNK_URL = "https://tiktok.example/chunks/up-1"
GRAPH_URL = "https://graph.example/v18.0"


class TestResumablePutAdapter:
    @pytest.fixture
    def adapter(self, http_client):
        return ResumablePutAdapter(http_client, upload_url=YOUTUBE_URL)

    @pytest.mark.asyncio
    async def test_open_reads_location_header(self, adapter, transport):
        transport.add("POST", YOUTUBE_URL, httpx.Response(200, headers={"Location": SESSION_URL}))

        handle = await adapter.open(
            "token", FileMetadata("clip.mp4", 600, mime_type="video/mp4"),
            PublishOptions(title="Launch", tags=["demo"], privacy_status="unlisted")
        )

        assert handle == ResumableUploadHandle(upload_url=SESSION_URL)
        request = transport.requests[0]
        assert request.headers["Authorization"] == "Bearer token"
        assert request.headers["X-Upload-Content-Length"] == "600"
        assert request.headers["X-Upload-Content-Type"] == "video/mp4"
        body = json.loads(request.content)
        assert body["snippet"]["title"] == "Launch"
        assert body["snippet"]["tags"] == ["demo"]
        assert body["status"]["privacyStatus"] == "unlisted"

    @pytest.mark.asyncio
    async def test_open_without_location(self, adapter, transport):
        transport.add("POST", YOUTUBE_URL, httpx.Response(200))

        with pytest.raises(ProtocolException):
            await adapter.open("token", FileMetadata("clip.mp4", 600), PublishOptions())

    @pytest.mark.asyncio
    async def test_send_chunk_308_continues(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.Response(308))
        chunk = plan(600, 256)[1]

        result = await adapter.send_chunk("token", ResumableUploadHandle(SESSION_URL), chunk, b"x" * 256, 600)

        assert result.accepted is True
        assert result.finished is False
        assert transport.requests[0].headers["Content-Range"] == "bytes 256-511/600"

    @pytest.mark.asyncio
    async def test_send_chunk_200_finishes(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.Response(200, json={"id": "video-123"}))
        chunk = plan(600, 256)[2]

        result = await adapter.send_chunk("token", ResumableUploadHandle(SESSION_URL), chunk, b"x" * 88, 600)

        assert result.finished is True
        assert result.remote_asset_id == "video-123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AuthException),
        (403, AuthException),
        (429, TransientNetworkException),
        (503, TransientNetworkException),
        (400, ProtocolException),
    ])
    async def test_status_mapping(self, adapter, transport, status, error):
        transport.add("PUT", SESSION_URL, httpx.Response(status, json={"error": {"message": "nope"}}))
        chunk = plan(600, 256)[0]

        with pytest.raises(error):
            await adapter.send_chunk("token", ResumableUploadHandle(SESSION_URL), chunk, b"x" * 256, 600)

    @pytest.mark.asyncio
    async def test_transport_errors_are_transient(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.ConnectError("connection reset"))
        chunk = plan(600, 256)[0]

        with pytest.raises(TransientNetworkException):
            await adapter.send_chunk("token", ResumableUploadHandle(SESSION_URL), chunk, b"x" * 256, 600)

    @pytest.mark.asyncio
    async def test_timeouts_are_transient(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.ReadTimeout("slow"))
        chunk = plan(600, 256)[0]

        with pytest.raises(TransientNetworkException):
            await adapter.send_chunk("token", ResumableUploadHandle(SESSION_URL), chunk, b"x" * 256, 600)

    @pytest.mark.asyncio
    async def test_finalize_queries_status(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.Response(200, json={"id": "video-123"}))

        asset_id = await adapter.finalize("token", ResumableUploadHandle(SESSION_URL), PublishOptions(), 600)

        assert asset_id == "video-123"
        assert transport.requests[0].headers["Content-Range"] == "bytes */600"

    @pytest.mark.asyncio
    async def test_finalize_incomplete_upload(self, adapter, transport):
        transport.add("PUT", SESSION_URL, httpx.Response(308))

        with pytest.raises(ProtocolException):
            await adapter.finalize("token", ResumableUploadHandle(SESSION_URL), PublishOptions(), 600)

    @pytest.mark.asyncio
    async def test_rejects_foreign_handle(self, adapter):
        with pytest.raises(ProtocolException):
            await adapter.send_chunk("token", MediaIdHandle("123"), plan(600, 256)[0], b"x" * 256, 600)


class TestInitAppendFinalizeAdapter:
    @pytest.fixture
    def adapter(self, http_client):
        return InitAppendFinalizeAdapter(http_client, upload_url=X_URL)

    @pytest.mark.asyncio
    async def test_init(self, adapter, transport):
        transport.add("POST", X_URL, httpx.Response(202, json={"media_id_string": "710511363345354753"}))

        handle = await adapter.open("token", FileMetadata("clip.mp4", 1000, mime_type="video/mp4"), PublishOptions())

        assert handle == MediaIdHandle("710511363345354753")
        form = transport.requests[0].content.decode()
        assert "command=INIT" in form
        assert "total_bytes=1000" in form
        assert "media_category=tweet_video" in form

    @pytest.mark.asyncio
    async def test_init_without_media_id(self, adapter, transport):
        transport.add("POST", X_URL, httpx.Response(200, json={}))

        with pytest.raises(ProtocolException):
            await adapter.open("token", FileMetadata("clip.mp4", 1000), PublishOptions())

    @pytest.mark.asyncio
    async def test_append_never_finishes(self, adapter, transport):
        transport.add("POST", X_URL, httpx.Response(204))
        chunk = plan(1000, 256)[3]

        result = await adapter.send_chunk("token", MediaIdHandle("m-1"), chunk, b"x" * chunk.size, 1000)

        assert result.accepted is True
        assert result.finished is False
        body = transport.requests[0].content
        assert b'name="command"\r\n\r\nAPPEND' in body
        assert b'name="segment_index"\r\n\r\n3' in body
        assert b'name="media"' in body

    @pytest.mark.asyncio
    async def test_finalize(self, adapter, transport):
        transport.add("POST", X_URL, httpx.Response(201, json={"media_id_string": "m-1"}))

        assert await adapter.finalize("token", MediaIdHandle("m-1"), PublishOptions(), 1000) == "m-1"
        assert "command=FINALIZE" in transport.requests[0].content.decode()


class TestMultipartChunkAdapter:
    @pytest.fixture
    def adapter(self, http_client):
        return MultipartChunkAdapter(http_client, init_url=TIKTOK_URL)

    @pytest.mark.asyncio
    async def test_open_declares_chunk_layout(self, adapter, transport):
        transport.add("POST", TIKTOK_URL, httpx.Response(200, json={
            "data": {"upload_url": TIKTOK_CHUNK_URL, "upload_id": "up-1"}
        }))

        handle = await adapter.open("token", FileMetadata("clip.mp4", 600, chunk_size=256), PublishOptions())

        assert handle == MultipartUploadHandle(TIKTOK_CHUNK_URL, "up-1")
        source_info = json.loads(transport.requests[0].content)["source_info"]
        assert source_info == {"source": "FILE_UPLOAD", "video_size": 600, "chunk_size": 256, "total_chunk_count": 3}

    @pytest.mark.asyncio
    async def test_open_missing_upload_url(self, adapter, transport):
        transport.add("POST", TIKTOK_URL, httpx.Response(200, json={"data": {}}))

        with pytest.raises(ProtocolException):
            await adapter.open("token", FileMetadata("clip.mp4", 600, chunk_size=256), PublishOptions())

    @pytest.mark.asyncio
    async def test_send_chunk_posts_form(self, adapter, transport):
        transport.add("POST", TIKTOK_CHUNK_URL, httpx.Response(200, json={}))
        chunk = plan(600, 256)[2]

        result = await adapter.send_chunk("token", MultipartUploadHandle(TIKTOK_CHUNK_URL, "up-1"), chunk, b"x" * 88, 600)

        assert result.accepted is True
        assert result.finished is False
        body = transport.requests[0].content
        assert b'name="upload_id"\r\n\r\nup-1' in body
        assert b'name="chunk_index"\r\n\r\n2' in body
        assert b'name="chunk_data"' in body

    @pytest.mark.asyncio
    async def test_finalize_is_local(self, adapter, transport):
        asset_id = await adapter.finalize("token", MultipartUploadHandle(TIKTOK_CHUNK_URL, "up-1"), PublishOptions(), 600)

        assert asset_id == "up-1"
        assert transport.requests == []


class TestContainerPublishAdapter:
    @pytest.fixture
    def adapter(self, http_client):
        return ContainerPublishAdapter(http_client, graph_api_base_url=GRAPH_URL, account_id="ig-1")

    @pytest.mark.asyncio
    async def test_open_requires_source_url(self, adapter):
        with pytest.raises(ValidationException):
            await adapter.open("token", FileMetadata("photo.jpg", 100), PublishOptions())

    @pytest.mark.asyncio
    async def test_open_video_container(self, adapter, transport):
        transport.add("POST", f"{GRAPH_URL}/ig-1/media", httpx.Response(200, json={"id": "container-1"}))

        handle = await adapter.open(
            "token",
            FileMetadata("clip.mp4", 100, mime_type="video/mp4", source_url="https://cdn.example/clip.mp4"),
            PublishOptions(caption="hello")
        )

        assert handle == ContainerHandle("container-1")
        form = transport.requests[0].content.decode()
        assert "media_type=VIDEO" in form
        assert "video_url=https%3A%2F%2Fcdn.example%2Fclip.mp4" in form
        assert "caption=hello" in form

    @pytest.mark.asyncio
    async def test_open_reel(self, adapter, transport):
        transport.add("POST", f"{GRAPH_URL}/ig-1/media", httpx.Response(200, json={"id": "container-1"}))

        await adapter.open(
            "token",
            FileMetadata("clip.mp4", 100, mime_type="video/mp4", source_url="https://cdn.example/clip.mp4"),
            PublishOptions(media_type="reel")
        )

        assert "media_type=REELS" in transport.requests[0].content.decode()

    @pytest.mark.asyncio
    async def test_send_chunk_is_noop(self, adapter, transport):
        result = await adapter.send_chunk("token", ContainerHandle("c-1"), plan(100, 100)[0], b"", 100)

        assert result.accepted is True
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_carousel_creates_children_then_parent(self, adapter, transport):
        transport.add(
            "POST", f"{GRAPH_URL}/ig-1/media",
            httpx.Response(200, json={"id": "child-1"}),
            httpx.Response(200, json={"id": "child-2"}),
            httpx.Response(200, json={"id": "parent-1"})
        )

        handle = await adapter.open_carousel(
            "token",
            [CarouselItem("https://cdn.example/a.jpg"), CarouselItem("https://cdn.example/b.mp4", "video")],
            PublishOptions(caption="two things")
        )

        assert handle == ContainerHandle("parent-1", children=["child-1", "child-2"])
        forms = [r.content.decode() for r in transport.requests]
        assert "is_carousel_item=true" in forms[0]
        assert "image_url=" in forms[0]
        assert "video_url=" in forms[1]
        assert "media_type=CAROUSEL" in forms[2]
        assert "children=child-1%2Cchild-2" in forms[2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [1, 11])
    async def test_carousel_item_bounds(self, adapter, transport, count):
        items = [CarouselItem(f"https://cdn.example/{n}.jpg") for n in range(count)]

        with pytest.raises(ValidationException):
            await adapter.open_carousel("token", items, PublishOptions())

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_publish(self, adapter, transport):
        transport.add("POST", f"{GRAPH_URL}/ig-1/media_publish", httpx.Response(200, json={"id": "media-9"}))

        media_id = await adapter.finalize(
            "token", ContainerHandle("container-1"), PublishOptions(location_id="loc-1"), 100
        )

        assert media_id == "media-9"
        form = transport.requests[0].content.decode()
        assert "creation_id=container-1" in form
        assert "location_id=loc-1" in form

    @pytest.mark.asyncio
    async def test_publish_with_expired_token(self, adapter, transport):
        transport.add("POST", f"{GRAPH_URL}/ig-1/media_publish",
                      httpx.Response(401, json={"error": {"message": "Session has expired"}}))

        with pytest.raises(AuthException) as exc_info:
            await adapter.finalize("token", ContainerHandle("container-1"), PublishOptions(), 100)

        assert "Session has expired" in exc_info.value.message


class TestAdapterRegistry:
    @pytest.mark.asyncio
    async def test_one_adapter_per_platform(self, http_client):
        adapters = build_adapters(http_client)

        assert set(adapters) == set(Platform)
        assert all(adapter.platform == platform for platform, adapter in adapters.items())
        assert adapters[Platform.X].ordered_chunks is True
        assert adapters[Platform.TIKTOK].ordered_chunks is False
        assert adapters[Platform.INSTAGRAM].streams_bytes is False
