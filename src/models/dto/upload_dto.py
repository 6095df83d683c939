"""
Data Transfer Objects for the Upload API.
Defines request and response schemas for upload session endpoints.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from src.adapters.container_publish_adapter import CAROUSEL_MAX_ITEMS, CAROUSEL_MIN_ITEMS
from src.models.upload_session import Platform, PublishOptions, SessionStatus, UploadSession


class PublishOptionsRequest(BaseModel):
    """Platform-facing metadata for the published asset."""
    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=5000)
    tags: List[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    privacy_status: Optional[str] = Field(default=None, pattern="^(private|public|unlisted)$")
    caption: Optional[str] = Field(default=None, max_length=2200)
    location_id: Optional[str] = None
    media_type: Optional[str] = Field(default=None, description="photo, video or reel")

    def to_domain(self) -> PublishOptions:
        return PublishOptions(**self.model_dump())


class InitializeUploadRequest(BaseModel):
    """Request schema for opening an upload session."""
    platform: Platform
    file_name: str = Field(..., min_length=1, max_length=255, description="Original filename")
    total_size: int = Field(..., gt=0, description="File length in bytes")
    mime_type: Optional[str] = None
    source_url: Optional[str] = Field(default=None, description="Public URL, for container-publish platforms")
    publish_options: PublishOptionsRequest = Field(default_factory=PublishOptionsRequest)

    @field_validator('file_name')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or v.strip() == "":
            raise ValueError("Field cannot be empty")
        return v.strip()


class CarouselItemRequest(BaseModel):
    """One item of a multi-item post."""
    file_name: str = Field(..., min_length=1, max_length=255)
    total_size: int = Field(..., gt=0)
    source_url: str = Field(..., min_length=1)
    mime_type: Optional[str] = None


class InitializeCarouselRequest(BaseModel):
    """Request schema for a container-publish carousel."""
    items: List[CarouselItemRequest] = Field(..., min_length=CAROUSEL_MIN_ITEMS, max_length=CAROUSEL_MAX_ITEMS)
    publish_options: PublishOptionsRequest = Field(default_factory=PublishOptionsRequest)


class FinalizeUploadRequest(BaseModel):
    """Optional publish overrides applied at finalize time."""
    publish_options: Optional[PublishOptionsRequest] = None


class SessionErrorResponse(BaseModel):
    category: str
    message: str
    exhausted: bool = False


class ChunkResponse(BaseModel):
    index: int
    byte_start: int
    byte_end: int
    size: int
    uploaded: bool


class UploadSessionResponse(BaseModel):
    """Response schema describing one upload session."""
    session_id: str
    platform: Platform
    file_name: str
    total_size: int
    chunk_size: int
    total_chunks: int
    status: SessionStatus
    created_at: datetime
    last_activity_at: datetime
    completed_at: Optional[datetime] = None
    remote_asset_id: Optional[str] = None
    error: Optional[SessionErrorResponse] = None

    @classmethod
    def from_session(cls, session: UploadSession) -> "UploadSessionResponse":
        return cls(
            session_id=session.session_id,
            platform=session.platform,
            file_name=session.file_name,
            total_size=session.total_size,
            chunk_size=session.chunk_size,
            total_chunks=len(session.chunks),
            status=session.status,
            created_at=session.created_at,
            last_activity_at=session.last_activity_at,
            completed_at=session.completed_at,
            remote_asset_id=session.remote_asset_id,
            error=SessionErrorResponse(**session.error.to_dict()) if session.error else None
        )


class InitializeUploadResponse(UploadSessionResponse):
    """Response schema for a newly opened session; includes the chunk plan."""
    chunks: List[ChunkResponse]

    @classmethod
    def from_session(cls, session: UploadSession) -> "InitializeUploadResponse":
        base = UploadSessionResponse.from_session(session).model_dump()
        return cls(**base, chunks=[ChunkResponse(**chunk.to_dict()) for chunk in session.chunks])


class SessionListResponse(BaseModel):
    """Response schema for listing an owner's sessions."""
    sessions: List[UploadSessionResponse]
    count: int


class UploadProgressResponse(BaseModel):
    """Response schema for progress queries."""
    session_id: str
    status: SessionStatus
    uploaded_chunks: int
    total_chunks: int
    bytes_uploaded: int
    total_bytes: int
    percent_complete: float
    eta_seconds: Optional[float] = None
    remote_asset_id: Optional[str] = None
    error: Optional[SessionErrorResponse] = None


class ResumeUploadResponse(BaseModel):
    """Response schema listing the chunks a client still has to send."""
    session_id: str
    status: SessionStatus
    chunk_size: int
    missing_chunks: List[int]
    uploaded_chunks: int
    total_chunks: int
    percent_complete: float
