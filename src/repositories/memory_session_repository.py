"""
In-memory session repository.
Same contract as the DynamoDB store, for local development and tests.
"""
import copy
import threading
from typing import Dict, List, Optional
from src.core import config
from src.core.exceptions import SessionNotFoundException
from src.models.upload_session import UploadSession
from src.repositories.session_repository import SessionMutator, SessionRepository


class InMemorySessionRepository(SessionRepository):
    """Process-local session store; one lock makes every read-modify-write atomic."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds if ttl_seconds is not None else config.settings.session_ttl_seconds)
        self._items: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def create(self, session: UploadSession) -> None:
        with self._lock:
            if self._live_item(session.session_id) is not None:
                raise ValueError(f"Upload session '{session.session_id}' already exists")
            self._items[session.session_id] = self._session_to_item(session)

    def get_by_id(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            item = self._live_item(session_id)
            return self._item_to_session(copy.deepcopy(item)) if item else None

    def update(self, session_id: str, mutator: SessionMutator) -> UploadSession:
        with self._lock:
            item = self._live_item(session_id)
            if item is None:
                raise SessionNotFoundException(f"Upload session '{session_id}' not found or expired")
            session = self._apply_mutator(copy.deepcopy(item), mutator)
            self._items[session_id] = self._session_to_item(session)
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    def list_by_owner(self, owner_id: str) -> List[UploadSession]:
        with self._lock:
            items = [copy.deepcopy(item) for item in self._live_items() if item['owner_id'] == owner_id]
        return sorted((self._item_to_session(item) for item in items), key=lambda s: s.created_at)

    def list_active(self) -> List[UploadSession]:
        with self._lock:
            items = [copy.deepcopy(item) for item in self._live_items()]
        return [session for session in map(self._item_to_session, items) if not session.is_terminal]

    def _live_item(self, session_id: str) -> Optional[dict]:
        item = self._items.get(session_id)
        if item is not None and self._is_expired(item):
            del self._items[session_id]
            return None
        return item

    def _live_items(self) -> List[dict]:
        for session_id in [key for key, item in self._items.items() if self._is_expired(item)]:
            del self._items[session_id]
        return list(self._items.values())
