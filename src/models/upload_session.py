"""
Upload Session domain model.
Represents one file transfer attempt to one external platform.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from src.core.exceptions import ErrorCategory


class Platform(str, Enum):
    """Target platforms, one per wire protocol variant."""
    YOUTUBE = "youtube"        # resumable PUT
    X = "x"                    # INIT / APPEND / FINALIZE
    TIKTOK = "tiktok"          # multipart chunk POST
    INSTAGRAM = "instagram"    # container then publish


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED})


class ChunkRange:
    """A contiguous, inclusive byte range of the source file."""

    def __init__(self, index: int, byte_start: int, byte_end: int, size: int, uploaded: bool = False):
        self.index = index
        self.byte_start = byte_start
        self.byte_end = byte_end
        self.size = size
        self.uploaded = uploaded

    def content_range(self, total_size: int) -> str:
        return f"bytes {self.byte_start}-{self.byte_end}/{total_size}"

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'byte_start': self.byte_start,
            'byte_end': self.byte_end,
            'size': self.size,
            'uploaded': self.uploaded
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkRange":
        return cls(
            index=int(data['index']),
            byte_start=int(data['byte_start']),
            byte_end=int(data['byte_end']),
            size=int(data['size']),
            uploaded=bool(data.get('uploaded', False))
        )

    def __eq__(self, other):
        if not isinstance(other, ChunkRange):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"ChunkRange(index={self.index}, start={self.byte_start}, end={self.byte_end}, uploaded={self.uploaded})"


class SessionError:
    """Human-readable error message plus a machine-checkable category."""

    def __init__(self, category: ErrorCategory, message: str, exhausted: bool = False):
        self.category = ErrorCategory(category)
        self.message = message
        self.exhausted = exhausted

    @classmethod
    def from_exception(cls, exc) -> "SessionError":
        return cls(
            category=exc.category,
            message=exc.message,
            exhausted=getattr(exc, 'exhausted', False)
        )

    def to_dict(self) -> dict:
        return {'category': self.category.value, 'message': self.message, 'exhausted': self.exhausted}

    @classmethod
    def from_dict(cls, data: dict) -> "SessionError":
        return cls(
            category=data['category'],
            message=data['message'],
            exhausted=bool(data.get('exhausted', False))
        )

    def __repr__(self):
        return f"SessionError(category={self.category.value}, exhausted={self.exhausted}, message={self.message!r})"


class RemoteHandle:
    """
    Opaque value returned by a platform once an upload is opened.

    Each subclass belongs to exactly one platform; adapters narrow on the
    concrete type before reading its fields.
    """
    kind: str = ""
    platform: Platform

    def to_dict(self) -> dict:
        raise NotImplementedError

    def __eq__(self, other):
        return type(self) is type(other) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"{type(self).__name__}({self.to_dict()})"


class ResumableUploadHandle(RemoteHandle):
    kind = "resumable_upload"
    platform = Platform.YOUTUBE

    def __init__(self, upload_url: str):
        self.upload_url = upload_url

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'upload_url': self.upload_url}


class MediaIdHandle(RemoteHandle):
    kind = "media_id"
    platform = Platform.X

    def __init__(self, media_id: str):
        self.media_id = media_id

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'media_id': self.media_id}


class MultipartUploadHandle(RemoteHandle):
    kind = "multipart_upload"
    platform = Platform.TIKTOK

    def __init__(self, upload_url: str, upload_id: str):
        self.upload_url = upload_url
        self.upload_id = upload_id

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'upload_url': self.upload_url, 'upload_id': self.upload_id}


class ContainerHandle(RemoteHandle):
    kind = "container"
    platform = Platform.INSTAGRAM

    def __init__(self, container_id: str, children: Optional[List[str]] = None):
        self.container_id = container_id
        self.children = list(children or [])

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'container_id': self.container_id, 'children': list(self.children)}


_HANDLE_TYPES = {
    ResumableUploadHandle.kind: ResumableUploadHandle,
    MediaIdHandle.kind: MediaIdHandle,
    MultipartUploadHandle.kind: MultipartUploadHandle,
    ContainerHandle.kind: ContainerHandle,
}


def remote_handle_from_dict(data: Optional[dict]) -> Optional[RemoteHandle]:
    """Rebuild a remote handle from its persisted, kind-tagged form."""
    if not data:
        return None
    fields = {key: value for key, value in data.items() if key != 'kind'}
    try:
        handle_type = _HANDLE_TYPES[data['kind']]
    except KeyError:
        raise ValueError(f"Unknown remote handle kind: {data.get('kind')}")
    return handle_type(**fields)


class FileMetadata:
    """Description of the source file supplied at initialization."""

    def __init__(
        self,
        file_name: str,
        total_size: int,
        mime_type: Optional[str] = None,
        source_url: Optional[str] = None,
        source_path: Optional[str] = None,
        chunk_size: Optional[int] = None
    ):
        self.file_name = file_name
        self.total_size = total_size
        self.mime_type = mime_type
        self.source_url = source_url
        self.source_path = source_path
        self.chunk_size = chunk_size

    def __repr__(self):
        return f"FileMetadata(file_name={self.file_name}, total_size={self.total_size})"


class PublishOptions:
    """Platform-facing metadata applied when opening or publishing an asset."""

    def __init__(
        self,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        category_id: Optional[str] = None,
        privacy_status: Optional[str] = None,
        caption: Optional[str] = None,
        location_id: Optional[str] = None,
        media_type: Optional[str] = None
    ):
        self.title = title
        self.description = description
        self.tags = list(tags or [])
        self.category_id = category_id
        self.privacy_status = privacy_status
        self.caption = caption
        self.location_id = location_id
        self.media_type = media_type

    def to_dict(self) -> dict:
        return {key: value for key, value in vars(self).items() if value not in (None, [])}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PublishOptions":
        return cls(**(data or {}))

    def merged_with(self, override: Optional["PublishOptions"]) -> "PublishOptions":
        if override is None:
            return self
        merged = self.to_dict()
        merged.update(override.to_dict())
        return PublishOptions.from_dict(merged)


class UploadSession:
    """Domain model for a resumable upload to one platform."""

    def __init__(
        self,
        session_id: str,
        owner_id: str,
        platform: Platform,
        file_name: str,
        total_size: int,
        chunk_size: int,
        chunks: List[ChunkRange],
        status: SessionStatus,
        created_at: datetime,
        last_activity_at: datetime,
        remote_handle: Optional[RemoteHandle] = None,
        completed_at: Optional[datetime] = None,
        remote_asset_id: Optional[str] = None,
        error: Optional[SessionError] = None,
        publish_options: Optional[PublishOptions] = None,
        version: int = 0
    ):
        self.session_id = session_id
        self.owner_id = owner_id
        self.platform = Platform(platform)
        self.file_name = file_name
        self.total_size = total_size
        self.chunk_size = chunk_size
        self.chunks = chunks
        self.status = SessionStatus(status)
        self.created_at = created_at
        self.last_activity_at = last_activity_at
        self.remote_handle = remote_handle
        self.completed_at = completed_at
        self.remote_asset_id = remote_asset_id
        self.error = error
        self.publish_options = publish_options or PublishOptions()
        self.version = version

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def uploaded_chunk_count(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.uploaded)

    @property
    def bytes_uploaded(self) -> int:
        return sum(chunk.size for chunk in self.chunks if chunk.uploaded)

    @property
    def all_chunks_uploaded(self) -> bool:
        return all(chunk.uploaded for chunk in self.chunks)

    def missing_chunk_indices(self) -> List[int]:
        return [chunk.index for chunk in self.chunks if not chunk.uploaded]

    def __repr__(self):
        return (
            f"UploadSession(session_id={self.session_id}, platform={self.platform.value}, "
            f"status={self.status.value}, file_name={self.file_name})"
        )
