"""
Dependency injection container for FastAPI.
Provides singleton-like behavior for services and repositories.
"""
import logging
from functools import lru_cache
from typing import Optional
import httpx
from src.adapters.registry import build_adapters, create_http_client
from src.core import config
from src.repositories.dynamo_session_repository import DynamoSessionRepository
from src.repositories.memory_session_repository import InMemorySessionRepository
from src.repositories.session_repository import SessionRepository
from src.repositories.staging_repository import StagingRepository
from src.services.credential_provider import CredentialProvider, DynamoCredentialProvider
from src.services.media_validation_service import MediaValidationService
from src.services.retry_executor import RetryExecutor
from src.services.stale_session_reaper import StaleSessionReaper
from src.services.upload_orchestrator import UploadOrchestrator

logger = logging.getLogger(__name__)


@lru_cache()
def get_session_repository() -> SessionRepository:
    """Get the session store selected by SESSION_STORE_BACKEND."""
    backend = config.settings.session_store_backend.lower()
    if backend == "memory":
        logger.info("Using in-memory session store")
        return InMemorySessionRepository()
    if backend != "dynamodb":
        raise ValueError(f"Unknown session store backend: {config.settings.session_store_backend}")
    return DynamoSessionRepository()


@lru_cache()
def get_credential_provider() -> CredentialProvider:
    """Get CredentialProvider singleton instance."""
    return DynamoCredentialProvider()


@lru_cache()
def get_staging_repository() -> Optional[StagingRepository]:
    """Get StagingRepository singleton, or None when no staging bucket is configured."""
    if not config.settings.staging_bucket_name:
        logger.info("No staging bucket configured; container uploads need a source_url")
        return None
    return StagingRepository()


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client for platform calls."""
    return create_http_client()


@lru_cache()
def get_upload_orchestrator() -> UploadOrchestrator:
    """Get UploadOrchestrator singleton instance with injected dependencies."""
    return UploadOrchestrator(
        session_repository=get_session_repository(),
        credential_provider=get_credential_provider(),
        adapters=build_adapters(get_http_client()),
        retry_executor=RetryExecutor(
            max_attempts=config.settings.retry_max_attempts,
            base_delay=config.settings.retry_base_delay_seconds
        ),
        validation_service=MediaValidationService(),
        staging_repository=get_staging_repository()
    )


@lru_cache()
def get_stale_session_reaper() -> StaleSessionReaper:
    """Get StaleSessionReaper singleton instance."""
    return StaleSessionReaper(get_upload_orchestrator())
