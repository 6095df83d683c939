"""
Adapter registry.
Maps each platform to the adapter that speaks its upload protocol.
"""
from typing import Dict
import httpx
from src.adapters.base import PlatformAdapter
from src.adapters.container_publish_adapter import ContainerPublishAdapter
from src.adapters.init_append_finalize_adapter import InitAppendFinalizeAdapter
from src.adapters.multipart_chunk_adapter import MultipartChunkAdapter
from src.adapters.resumable_put_adapter import ResumablePutAdapter
from src.core import config
from src.models.upload_session import Platform


def create_http_client() -> httpx.AsyncClient:
    """Shared connection pool for all platform calls."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.settings.http_timeout_seconds),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100)
    )


def build_adapters(client: httpx.AsyncClient) -> Dict[Platform, PlatformAdapter]:
    """Instantiate one adapter per platform over a shared client."""
    adapters = [
        ResumablePutAdapter(client),
        InitAppendFinalizeAdapter(client),
        MultipartChunkAdapter(client),
        ContainerPublishAdapter(client),
    ]
    return {adapter.platform: adapter for adapter in adapters}
