"""
Upload Orchestrator.
Drives upload sessions through the platform adapters: opening remote
channels, sending chunks with retry, tracking state and finalizing.
"""
import asyncio
import contextlib
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from src.adapters.base import ChunkResult, PlatformAdapter
from src.adapters.container_publish_adapter import CAROUSEL_MAX_ITEMS, CAROUSEL_MIN_ITEMS, CarouselItem
from src.core.exceptions import (
    AuthException,
    MediaUploadException,
    ProtocolException,
    RetryExhaustedException,
    SessionNotFoundException,
    UploadCancelledException,
    ValidationException
)
from src.models.dto.upload_dto import ResumeUploadResponse, SessionErrorResponse, UploadProgressResponse
from src.models.upload_session import (
    FileMetadata,
    Platform,
    PublishOptions,
    SessionError,
    SessionStatus,
    UploadSession
)
from src.repositories.session_repository import SessionRepository
from src.repositories.staging_repository import StagingRepository
from src.services import chunk_planner
from src.services.credential_provider import CredentialProvider
from src.services.media_validation_service import MediaValidationService
from src.services.retry_executor import RetryExecutor

logger = logging.getLogger(__name__)


class SessionObserver(ABC):
    """Receives session state transitions; register with the orchestrator or poll instead."""

    @abstractmethod
    def on_transition(self, session: UploadSession, previous_status: Optional[SessionStatus]) -> None:
        pass


class UploadOrchestrator:
    """
    Facade over planning, adapters, retries and session storage.

    The session repository is the single source of truth. The per-session
    locks and cancel events kept here are process-local and are dropped
    once a session ends.
    """

    def __init__(
        self,
        session_repository: SessionRepository,
        credential_provider: CredentialProvider,
        adapters: Dict[Platform, PlatformAdapter],
        retry_executor: RetryExecutor = None,
        validation_service: MediaValidationService = None,
        staging_repository: Optional[StagingRepository] = None,
        chunk_size: int = None,
        observers: Optional[List[SessionObserver]] = None,
        clock: Callable[[], datetime] = None
    ):
        from src.core import config

        self.session_repository = session_repository
        self.credential_provider = credential_provider
        self.adapters = adapters
        self.retry_executor = retry_executor or RetryExecutor(
            config.settings.retry_max_attempts, config.settings.retry_base_delay_seconds
        )
        self.validation_service = validation_service or MediaValidationService()
        self.staging_repository = staging_repository
        self.chunk_size = chunk_size or config.settings.chunk_size_bytes
        self.observers = list(observers or [])
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, asyncio.Lock] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}

    def register_observer(self, observer: SessionObserver) -> None:
        self.observers.append(observer)

    # -- session query API -------------------------------------------------

    async def initialize_upload(
        self,
        owner_id: str,
        platform: Platform,
        file_metadata: FileMetadata,
        publish_options: Optional[PublishOptions] = None
    ) -> Tuple[UploadSession, int]:
        """
        Validate the file, plan chunks, open the remote channel and persist the session.

        Args:
            owner_id: Initiating user
            platform: Target platform
            file_metadata: Declared name and size of the source file
            publish_options: Title, caption and similar metadata for the asset

        Returns:
            Tuple of (new session, chunk size the client must slice with)

        Raises:
            ValidationException: If the file is not acceptable for the platform
            AuthException: If no valid credential exists
            RetryExhaustedException, ProtocolException: If the platform refused to open
        """
        platform = Platform(platform)
        adapter = self._adapter(platform)
        publish_options = publish_options or PublishOptions()

        self.validation_service.validate(platform, file_metadata)
        file_metadata.mime_type = file_metadata.mime_type or self.validation_service.mime_type_for(file_metadata.file_name)
        credential = await self._credential(owner_id, platform)

        session_id = str(uuid.uuid4())
        # Container platforms pull the whole file, so it is tracked as one range
        chunk_size = self.chunk_size if adapter.streams_bytes else file_metadata.total_size
        chunks = chunk_planner.plan(file_metadata.total_size, chunk_size)
        file_metadata.chunk_size = chunk_size

        if not adapter.streams_bytes:
            await self._ensure_source_url(session_id, file_metadata)

        try:
            handle = await self.retry_executor.execute(
                lambda: adapter.open(credential, file_metadata, publish_options),
                description=f"{platform.value} open for session {session_id}"
            )
        except MediaUploadException:
            await self._remove_artifacts(session_id)
            raise

        now = self._clock()
        session = UploadSession(
            session_id=session_id,
            owner_id=owner_id,
            platform=platform,
            file_name=file_metadata.file_name,
            total_size=file_metadata.total_size,
            chunk_size=chunk_size,
            chunks=chunks,
            status=SessionStatus.INITIALIZED,
            created_at=now,
            last_activity_at=now,
            remote_handle=handle,
            publish_options=publish_options
        )
        await self._store(self.session_repository.create, session)
        logger.info(
            "Upload session %s initialized: owner=%s platform=%s file=%s size=%d chunks=%d",
            session_id, owner_id, platform.value, session.file_name, session.total_size, len(chunks)
        )
        self._notify(session, None)

        if not adapter.streams_bytes:
            session = await self._mark_container_ready(session_id)

        return session, chunk_size

    async def initialize_carousel(
        self,
        owner_id: str,
        items: List[FileMetadata],
        publish_options: Optional[PublishOptions] = None
    ) -> UploadSession:
        """
        Open a multi-item container-publish session.

        Each item becomes a child container; the parent is what gets published.

        Raises:
            ValidationException: If an item is not acceptable
            AuthException: If no valid credential exists
        """
        platform = Platform.INSTAGRAM
        adapter = self._adapter(platform)
        publish_options = publish_options or PublishOptions()
        if not CAROUSEL_MIN_ITEMS <= len(items) <= CAROUSEL_MAX_ITEMS:
            raise ValidationException(
                f"A carousel needs {CAROUSEL_MIN_ITEMS} to {CAROUSEL_MAX_ITEMS} items, got {len(items)}"
            )

        for item in items:
            self.validation_service.validate(platform, item)
            item.mime_type = item.mime_type or self.validation_service.mime_type_for(item.file_name)
        credential = await self._credential(owner_id, platform)

        session_id = str(uuid.uuid4())
        for position, item in enumerate(items):
            await self._ensure_source_url(session_id, item, position)
        carousel_items = [
            CarouselItem(source_url=item.source_url, media_type='video' if item.mime_type.startswith('video/') else 'photo')
            for item in items
        ]

        try:
            handle = await self.retry_executor.execute(
                lambda: adapter.open_carousel(credential, carousel_items, publish_options),
                description=f"carousel open for session {session_id}"
            )
        except MediaUploadException:
            await self._remove_artifacts(session_id)
            raise

        total_size = sum(item.total_size for item in items)
        now = self._clock()
        session = UploadSession(
            session_id=session_id,
            owner_id=owner_id,
            platform=platform,
            file_name=f"carousel-{len(items)}-items",
            total_size=total_size,
            chunk_size=total_size,
            chunks=chunk_planner.plan(total_size, total_size),
            status=SessionStatus.INITIALIZED,
            created_at=now,
            last_activity_at=now,
            remote_handle=handle,
            publish_options=publish_options
        )
        await self._store(self.session_repository.create, session)
        logger.info("Carousel session %s initialized with %d items", session_id, len(items))
        self._notify(session, None)
        return await self._mark_container_ready(session_id)

    async def upload_chunk(self, session_id: str, chunk_index: int, data: bytes) -> UploadProgressResponse:
        """
        Send one chunk through its platform adapter with retry.

        Re-sending an already uploaded index is a no-op success.

        Raises:
            SessionNotFoundException: If the session is unknown or expired
            ValidationException: If the session is terminal or the chunk does not match the plan
            AuthException: If the credential is missing or rejected; the session keeps its state
            RetryExhaustedException, ProtocolException: The session is marked failed
            UploadCancelledException: If the session was cancelled mid-transfer
        """
        session = await self._load(session_id)
        adapter = self._adapter(session.platform)
        self._check_chunk(session, adapter, chunk_index, data)

        if session.chunks[chunk_index].uploaded:
            return await self._acknowledge_duplicate(session_id, chunk_index)

        lock = self._lock_for(session_id) if adapter.ordered_chunks else contextlib.nullcontext()
        async with lock:
            session = await self._load(session_id)
            self._check_chunk(session, adapter, chunk_index, data)
            if session.chunks[chunk_index].uploaded:
                return await self._acknowledge_duplicate(session_id, chunk_index)

            chunk = session.chunks[chunk_index]
            cancel_event = self._cancel_event_for(session_id)
            try:
                credential = await self._credential(session.owner_id, session.platform)
                result = await self.retry_executor.execute(
                    lambda: adapter.send_chunk(credential, session.remote_handle, chunk, data, session.total_size),
                    cancel_event=cancel_event,
                    description=f"{session.platform.value} chunk {chunk_index} of session {session_id}"
                )
            except UploadCancelledException:
                raise
            except MediaUploadException as e:
                await self._record_error(session_id, e)
                raise

            if not result.accepted:
                error = ProtocolException(f"{session.platform.value} did not accept chunk {chunk_index}")
                await self._record_error(session_id, error)
                raise error

            session = await self._mark_uploaded(session_id, chunk_index, result, cancel_event)
            logger.info(
                "Session %s chunk %d/%d uploaded", session_id, chunk_index + 1, len(session.chunks)
            )

            if session.status is SessionStatus.UPLOADING and session.all_chunks_uploaded:
                session = await self._finalize(session_id)

        return self._progress(session)

    async def upload_chunk_from_file(self, session_id: str, chunk_index: int, path: str) -> UploadProgressResponse:
        """Read the planned byte range for chunk_index from a local file and send it."""
        session = await self._load(session_id)
        if not 0 <= chunk_index < len(session.chunks):
            raise ValidationException(f"Chunk index {chunk_index} out of range (0-{len(session.chunks) - 1})")
        chunk = session.chunks[chunk_index]

        def read_range() -> bytes:
            with open(path, 'rb') as source:
                source.seek(chunk.byte_start)
                return source.read(chunk.size)

        data = await asyncio.to_thread(read_range)
        return await self.upload_chunk(session_id, chunk_index, data)

    async def finalize_upload(self, session_id: str, publish_options: Optional[PublishOptions] = None) -> UploadSession:
        """
        Finalize a session whose bytes are all on the platform.

        Container sessions wait here for their publish call; other sessions
        arrive here when finalize previously stopped on an auth error.

        Raises:
            SessionNotFoundException: If the session is unknown or expired
            ValidationException: If chunks are still missing or the session is terminal
        """
        session = await self._load(session_id)
        if session.is_terminal:
            raise ValidationException(f"Session '{session_id}' is already {session.status.value}")
        if not session.all_chunks_uploaded:
            raise ValidationException(
                f"Session '{session_id}' still has {len(session.missing_chunk_indices())} chunks to upload"
            )

        async with self._lock_for(session_id):
            return await self._finalize(session_id, publish_options)

    async def get_progress(self, session_id: str) -> UploadProgressResponse:
        """Derive progress and ETA from the stored session; no side effects."""
        return self._progress(await self._load(session_id))

    async def resume_upload(self, session_id: str) -> ResumeUploadResponse:
        """
        List the chunk indices the client still has to send.

        Raises:
            SessionNotFoundException: If the session is unknown or expired
            ValidationException: If the session is already terminal
        """
        session = await self._load(session_id)
        if session.is_terminal:
            raise ValidationException(f"Upload {session.status.value}; it cannot be resumed")

        return ResumeUploadResponse(
            session_id=session.session_id,
            status=session.status,
            chunk_size=session.chunk_size,
            missing_chunks=session.missing_chunk_indices(),
            uploaded_chunks=session.uploaded_chunk_count,
            total_chunks=len(session.chunks),
            percent_complete=self._percent(session)
        )

    async def cancel_upload(self, session_id: str) -> None:
        """
        Cancel a session, stop any in-flight retry and remove its record.

        Remote cleanup is best-effort; platforms may keep partial uploads.

        Raises:
            SessionNotFoundException: If the session is unknown or expired
            ValidationException: If the session already reached a terminal state
        """
        cancel_event = self._cancel_event_for(session_id)
        cancel_event.set()
        try:
            session = await self._update(session_id, self._cancel_mutator)
        except MediaUploadException:
            self._forget(session_id)
            raise

        adapter = self._adapter(session.platform)
        try:
            credential = await asyncio.to_thread(
                self.credential_provider.get_valid_credential, session.owner_id, session.platform
            )
            await adapter.abort(credential, session.remote_handle)
        except MediaUploadException as e:
            logger.warning("Remote abort for session %s failed: %s", session_id, e.message)

        await self._remove_artifacts(session_id)
        await self._store(self.session_repository.delete, session_id)
        self._forget(session_id)
        logger.info("Upload session %s cancelled", session_id)

    async def get_session(self, session_id: str, owner_id: Optional[str] = None) -> UploadSession:
        """Load a session, hiding sessions that belong to another owner."""
        session = await self._load(session_id)
        if owner_id is not None and session.owner_id != owner_id:
            raise SessionNotFoundException(f"Upload session '{session_id}' not found or expired")
        return session

    async def list_sessions_for_owner(self, owner_id: str) -> List[UploadSession]:
        return await self._store(self.session_repository.list_by_owner, owner_id)

    async def list_active_sessions(self) -> List[UploadSession]:
        return await self._store(self.session_repository.list_active)

    async def delete_session(self, session_id: str, owner_id: Optional[str] = None) -> None:
        """
        Remove a session on behalf of its owner, cancelling it first if still active.

        Raises:
            SessionNotFoundException: If the session is unknown, expired or owned by someone else
        """
        session = await self.get_session(session_id, owner_id)
        if not session.is_terminal:
            await self.cancel_upload(session_id)
            return

        await self._remove_artifacts(session_id)
        await self._store(self.session_repository.delete, session_id)
        self._forget(session_id)
        logger.info("Upload session %s deleted", session_id)

    async def release_finished_sessions(self) -> int:
        """
        Drop locks and cancel events of sessions that ended or vanished elsewhere.

        Sessions cancelled by another process or expired by the store never pass
        through this process again, so their local state is pruned here.

        Returns:
            Number of sessions whose local state was released
        """
        released = 0
        for session_id in set(self._locks) | set(self._cancel_events):
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            session = await self._store(self.session_repository.get_by_id, session_id)
            if session is None or session.is_terminal:
                self._forget(session_id)
                released += 1
        if released:
            logger.info("Released local state of %d finished sessions", released)
        return released

    # -- internals ---------------------------------------------------------

    async def _finalize(self, session_id: str, publish_options: Optional[PublishOptions] = None) -> UploadSession:
        session = await self._update(session_id, self._processing_mutator)
        if session.is_terminal:
            return session

        adapter = self._adapter(session.platform)
        options = session.publish_options.merged_with(publish_options)
        cancel_event = self._cancel_event_for(session_id)
        try:
            credential = await self._credential(session.owner_id, session.platform)
            asset_id = await self.retry_executor.execute(
                lambda: adapter.finalize(credential, session.remote_handle, options, session.total_size),
                cancel_event=cancel_event,
                description=f"{session.platform.value} finalize of session {session_id}"
            )
        except UploadCancelledException:
            raise
        except MediaUploadException as e:
            await self._record_error(session_id, e)
            raise

        now = self._clock()

        def complete(s: UploadSession) -> None:
            s.status = SessionStatus.COMPLETED
            s.completed_at = now
            s.last_activity_at = now
            s.remote_asset_id = asset_id
            s.error = None

        session = await self._update_unless_cancelled(session_id, complete, cancel_event)
        logger.info("Upload session %s completed: remote asset %s", session_id, asset_id)
        await self._remove_artifacts(session_id)
        self._forget(session_id)
        return session

    async def _mark_uploaded(
        self, session_id: str, chunk_index: int, result: ChunkResult, cancel_event: asyncio.Event
    ) -> UploadSession:
        now = self._clock()

        def mark(s: UploadSession) -> None:
            s.chunks[chunk_index].uploaded = True
            s.last_activity_at = now
            s.error = None
            if s.status is SessionStatus.INITIALIZED:
                s.status = SessionStatus.UPLOADING
            if result.finished:
                if not s.all_chunks_uploaded:
                    logger.warning(
                        "Platform reported session %s finished with chunks %s unacknowledged",
                        s.session_id, s.missing_chunk_indices()
                    )
                s.status = SessionStatus.COMPLETED
                s.completed_at = now
                s.remote_asset_id = result.remote_asset_id

        session = await self._update_unless_cancelled(session_id, mark, cancel_event)
        if session.status is SessionStatus.COMPLETED:
            logger.info("Upload session %s completed by platform: remote asset %s", session_id, session.remote_asset_id)
            await self._remove_artifacts(session_id)
            self._forget(session_id)
        return session

    async def _mark_container_ready(self, session_id: str) -> UploadSession:
        """The platform pulls container media itself, so its single range counts as delivered."""
        now = self._clock()

        def ready(s: UploadSession) -> None:
            for chunk in s.chunks:
                chunk.uploaded = True
            s.last_activity_at = now
            s.status = SessionStatus.PROCESSING

        return await self._update(session_id, ready)

    async def _acknowledge_duplicate(self, session_id: str, chunk_index: int) -> UploadProgressResponse:
        logger.info("Session %s chunk %d already uploaded; ignoring duplicate", session_id, chunk_index)
        now = self._clock()

        def touch(s: UploadSession) -> None:
            s.last_activity_at = now

        return self._progress(await self._update(session_id, touch))

    async def _record_error(self, session_id: str, error: MediaUploadException) -> None:
        """
        Attach an error to the session.

        Exhausted retries and protocol errors fail the session; auth and
        other errors leave its state alone so the caller can retry.
        """
        fatal = isinstance(error, (RetryExhaustedException, ProtocolException))
        now = self._clock()

        def record(s: UploadSession) -> None:
            s.error = SessionError.from_exception(error)
            s.last_activity_at = now
            if fatal:
                s.status = SessionStatus.FAILED

        try:
            await self._update(session_id, record)
        except (SessionNotFoundException, ValidationException) as e:
            logger.warning("Could not record error on session %s: %s", session_id, e.message)
            return

        if fatal:
            logger.error("Upload session %s failed: %s", session_id, error.message)
            await self._remove_artifacts(session_id)
            self._forget(session_id)
        elif isinstance(error, AuthException):
            logger.warning("Upload session %s needs re-authentication: %s", session_id, error.message)

    async def _update_unless_cancelled(self, session_id: str, mutator, cancel_event: asyncio.Event) -> UploadSession:
        """Store an update, reporting cancellation if the session went away meanwhile."""
        if cancel_event.is_set():
            raise UploadCancelledException(f"Upload session '{session_id}' was cancelled")
        try:
            return await self._update(session_id, mutator)
        except (SessionNotFoundException, ValidationException) as e:
            if cancel_event.is_set():
                raise UploadCancelledException(f"Upload session '{session_id}' was cancelled") from e
            raise

    async def _update(self, session_id: str, mutator) -> UploadSession:
        previous = {}

        def apply(session: UploadSession) -> None:
            previous['status'] = session.status
            mutator(session)

        session = await self._store(self.session_repository.update, session_id, apply)
        if session.status is not previous['status']:
            logger.info("Session %s: %s -> %s", session_id, previous['status'].value, session.status.value)
            self._notify(session, previous['status'])
        return session

    @staticmethod
    def _processing_mutator(session: UploadSession) -> None:
        session.status = SessionStatus.PROCESSING

    @staticmethod
    def _cancel_mutator(session: UploadSession) -> None:
        session.status = SessionStatus.CANCELLED

    def _check_chunk(self, session: UploadSession, adapter: PlatformAdapter, chunk_index: int, data: bytes) -> None:
        if session.is_terminal:
            raise ValidationException(f"Session '{session.session_id}' is {session.status.value}")
        if not adapter.streams_bytes:
            raise ValidationException(
                f"{session.platform.value} pulls media from its source URL and does not accept chunk data"
            )
        if not 0 <= chunk_index < len(session.chunks):
            raise ValidationException(f"Chunk index {chunk_index} out of range (0-{len(session.chunks) - 1})")
        expected = session.chunks[chunk_index].size
        if len(data) != expected:
            raise ValidationException(f"Chunk {chunk_index} must be {expected} bytes, got {len(data)}")

    def _progress(self, session: UploadSession) -> UploadProgressResponse:
        return UploadProgressResponse(
            session_id=session.session_id,
            status=session.status,
            uploaded_chunks=session.uploaded_chunk_count,
            total_chunks=len(session.chunks),
            bytes_uploaded=session.bytes_uploaded,
            total_bytes=session.total_size,
            percent_complete=self._percent(session),
            eta_seconds=self._eta_seconds(session),
            remote_asset_id=session.remote_asset_id,
            error=SessionErrorResponse(**session.error.to_dict()) if session.error else None
        )

    @staticmethod
    def _percent(session: UploadSession) -> float:
        if not session.chunks:
            return 0.0
        return round(session.uploaded_chunk_count / len(session.chunks) * 100, 2)

    @staticmethod
    def _eta_seconds(session: UploadSession) -> Optional[float]:
        """Remaining bytes over the average rate observed between creation and last activity."""
        if session.status is SessionStatus.COMPLETED:
            return 0.0
        uploaded = session.bytes_uploaded
        elapsed = (session.last_activity_at - session.created_at).total_seconds()
        if uploaded <= 0 or elapsed <= 0:
            return None
        return round((session.total_size - uploaded) / (uploaded / elapsed), 1)

    async def _ensure_source_url(self, session_id: str, file_metadata: FileMetadata, position: int = 0) -> None:
        """Make the file reachable by URL, staging it in S3 when only a local path is known."""
        if file_metadata.source_url:
            return
        if not file_metadata.source_path or self.staging_repository is None:
            raise ValidationException(
                f"{file_metadata.file_name}: a source_url or a stageable source_path is required"
            )

        def stage() -> str:
            with open(file_metadata.source_path, 'rb') as source:
                key = self.staging_repository.stage_file(
                    source, session_id, file_metadata.file_name, file_metadata.mime_type, position
                )
            return self.staging_repository.presigned_url(key)

        file_metadata.source_url = await asyncio.to_thread(stage)

    async def _remove_artifacts(self, session_id: str) -> None:
        if self.staging_repository is None:
            return
        try:
            removed = await asyncio.to_thread(self.staging_repository.delete_session_artifacts, session_id)
        except MediaUploadException as e:
            logger.warning("Could not remove staged artifacts for session %s: %s", session_id, e.message)
            return
        if removed:
            logger.info("Removed %d staged artifacts for session %s", removed, session_id)

    async def _credential(self, owner_id: str, platform: Platform) -> str:
        credential = await asyncio.to_thread(self.credential_provider.get_valid_credential, owner_id, platform)
        if not credential:
            raise AuthException(f"No valid {Platform(platform).value} credential for user '{owner_id}'")
        return credential

    async def _load(self, session_id: str) -> UploadSession:
        session = await self._store(self.session_repository.get_by_id, session_id)
        if session is None:
            self._forget(session_id)
            raise SessionNotFoundException(f"Upload session '{session_id}' not found or expired")
        return session

    def _adapter(self, platform: Platform) -> PlatformAdapter:
        try:
            return self.adapters[Platform(platform)]
        except KeyError:
            raise ValidationException(f"Unsupported platform: {platform}")

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def _cancel_event_for(self, session_id: str) -> asyncio.Event:
        return self._cancel_events.setdefault(session_id, asyncio.Event())

    def _forget(self, session_id: str) -> None:
        self._locks.pop(session_id, None)
        self._cancel_events.pop(session_id, None)

    def _notify(self, session: UploadSession, previous_status: Optional[SessionStatus]) -> None:
        for observer in self.observers:
            try:
                observer.on_transition(session, previous_status)
            except Exception:
                logger.exception("Session observer %r failed for session %s", observer, session.session_id)

    @staticmethod
    async def _store(operation, *args):
        """Run a blocking repository call off the event loop."""
        return await asyncio.to_thread(operation, *args)
