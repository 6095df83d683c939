"""
Abstract base class for upload session stores.
Defines the contract for durable, expiring session storage.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional
from src.core.exceptions import ValidationException
from src.models.upload_session import (
    ChunkRange,
    PublishOptions,
    SessionError,
    UploadSession,
    remote_handle_from_dict
)

SessionMutator = Callable[[UploadSession], None]


class SessionRepository(ABC):
    """Repository interface for upload session records."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def create(self, session: UploadSession) -> None:
        """Persist a new session record."""
        pass

    @abstractmethod
    def get_by_id(self, session_id: str) -> Optional[UploadSession]:
        """Return the session, or None if unknown or expired."""
        pass

    @abstractmethod
    def update(self, session_id: str, mutator: SessionMutator) -> UploadSession:
        """
        Atomically apply mutator to the stored session and persist the result.

        The mutator may raise to abort the write. Implementations refuse to
        write back a record that was already terminal before the mutator ran.
        """
        pass

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the session record if present."""
        pass

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[UploadSession]:
        """List every unexpired session owned by owner_id."""
        pass

    @abstractmethod
    def list_active(self) -> List[UploadSession]:
        """List every unexpired session that is not in a terminal state."""
        pass

    def expires_at(self, now: Optional[datetime] = None) -> int:
        """Epoch second after which the record may be discarded."""
        now = now or datetime.now(timezone.utc)
        return int(now.timestamp()) + self.ttl_seconds

    def _apply_mutator(self, item: dict, mutator: SessionMutator) -> UploadSession:
        """Run mutator against a stored item and return the next version of the session."""
        session = self._item_to_session(item)
        if session.is_terminal:
            raise ValidationException(
                f"Session '{session.session_id}' is {session.status.value} and can no longer change"
            )
        mutator(session)
        session.version += 1
        return session

    def _session_to_item(self, session: UploadSession) -> dict:
        """Convert UploadSession to a storable item."""
        item = {
            'session_id': session.session_id,
            'owner_id': session.owner_id,
            'platform': session.platform.value,
            'file_name': session.file_name,
            'total_size': session.total_size,
            'chunk_size': session.chunk_size,
            'chunks': [chunk.to_dict() for chunk in session.chunks],
            'status': session.status.value,
            'created_at': session.created_at.isoformat(),
            'last_activity_at': session.last_activity_at.isoformat(),
            'publish_options': session.publish_options.to_dict(),
            'version': session.version,
            'expires_at': self.expires_at()
        }

        if session.remote_handle is not None:
            item['remote_handle'] = session.remote_handle.to_dict()
        if session.completed_at:
            item['completed_at'] = session.completed_at.isoformat()
        if session.remote_asset_id:
            item['remote_asset_id'] = session.remote_asset_id
        if session.error:
            item['error'] = session.error.to_dict()

        return item

    def _item_to_session(self, item: dict) -> UploadSession:
        """Convert stored item to UploadSession domain model."""
        completed_at = item.get('completed_at')
        error = item.get('error')
        return UploadSession(
            session_id=item['session_id'],
            owner_id=item['owner_id'],
            platform=item['platform'],
            file_name=item['file_name'],
            total_size=int(item['total_size']),
            chunk_size=int(item['chunk_size']),
            chunks=[ChunkRange.from_dict(chunk) for chunk in item.get('chunks', [])],
            status=item['status'],
            created_at=datetime.fromisoformat(item['created_at']),
            last_activity_at=datetime.fromisoformat(item['last_activity_at']),
            remote_handle=remote_handle_from_dict(item.get('remote_handle')),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            remote_asset_id=item.get('remote_asset_id'),
            error=SessionError.from_dict(error) if error else None,
            publish_options=PublishOptions.from_dict(item.get('publish_options')),
            version=int(item.get('version', 0))
        )

    @staticmethod
    def _is_expired(item: dict, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = item.get('expires_at')
        return expires_at is not None and int(expires_at) <= int(now.timestamp())
