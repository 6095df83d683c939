"""
Upload API routes.
HTTP endpoints for opening, feeding, inspecting and cancelling upload sessions.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Request, Response, status
from src.core.auth_dependencies import verify_token
from src.core.dependencies import get_upload_orchestrator
from src.models.dto.upload_dto import (
    FinalizeUploadRequest,
    InitializeCarouselRequest,
    InitializeUploadRequest,
    InitializeUploadResponse,
    ResumeUploadResponse,
    SessionListResponse,
    UploadProgressResponse,
    UploadSessionResponse
)
from src.models.upload_session import FileMetadata
from src.services.upload_orchestrator import UploadOrchestrator

router = APIRouter(prefix="/v1/api", tags=["Uploads"])


@router.post("/uploads", response_model=InitializeUploadResponse, status_code=status.HTTP_201_CREATED)
async def initialize_upload(
    request: InitializeUploadRequest,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """
    Open an upload session on the target platform.

    The response carries the chunk plan; send each chunk with
    `PUT /uploads/{session_id}/chunks/{index}`.
    """
    file_metadata = FileMetadata(
        file_name=request.file_name,
        total_size=request.total_size,
        mime_type=request.mime_type,
        source_url=request.source_url
    )
    session, _ = await orchestrator.initialize_upload(
        owner_id, request.platform, file_metadata, request.publish_options.to_domain()
    )
    return InitializeUploadResponse.from_session(session)


@router.post("/uploads/carousel", response_model=UploadSessionResponse, status_code=status.HTTP_201_CREATED)
async def initialize_carousel(
    request: InitializeCarouselRequest,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """Open a multi-item post; publish it with `POST /uploads/{session_id}/finalize`."""
    items = [
        FileMetadata(
            file_name=item.file_name,
            total_size=item.total_size,
            mime_type=item.mime_type,
            source_url=item.source_url
        )
        for item in request.items
    ]
    session = await orchestrator.initialize_carousel(owner_id, items, request.publish_options.to_domain())
    return UploadSessionResponse.from_session(session)


@router.put("/uploads/{session_id}/chunks/{chunk_index}", response_model=UploadProgressResponse)
async def upload_chunk(
    session_id: str,
    chunk_index: int,
    request: Request,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """
    Send one chunk as the raw request body.

    The body must be exactly the planned size of the chunk. Re-sending an
    uploaded chunk is accepted and changes nothing.
    """
    await orchestrator.get_session(session_id, owner_id)
    data = await request.body()
    return await orchestrator.upload_chunk(session_id, chunk_index, data)


@router.post("/uploads/{session_id}/finalize", response_model=UploadSessionResponse)
async def finalize_upload(
    session_id: str,
    request: Optional[FinalizeUploadRequest] = None,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """Publish a session whose media is fully on the platform."""
    await orchestrator.get_session(session_id, owner_id)
    overrides = None
    if request is not None and request.publish_options is not None:
        overrides = request.publish_options.to_domain()
    session = await orchestrator.finalize_upload(session_id, overrides)
    return UploadSessionResponse.from_session(session)


@router.get("/uploads/{session_id}/progress", response_model=UploadProgressResponse)
async def get_progress(
    session_id: str,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    await orchestrator.get_session(session_id, owner_id)
    return await orchestrator.get_progress(session_id)


@router.get("/uploads/{session_id}/resume", response_model=ResumeUploadResponse)
async def resume_upload(
    session_id: str,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """List the chunk indices still to send after an interruption."""
    await orchestrator.get_session(session_id, owner_id)
    return await orchestrator.resume_upload(session_id)


@router.post("/uploads/{session_id}/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_upload(
    session_id: str,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    await orchestrator.get_session(session_id, owner_id)
    await orchestrator.cancel_upload(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/uploads", response_model=SessionListResponse)
async def list_uploads(
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """List the caller's unexpired upload sessions, oldest first."""
    sessions = await orchestrator.list_sessions_for_owner(owner_id)
    return SessionListResponse(
        sessions=[UploadSessionResponse.from_session(session) for session in sessions],
        count=len(sessions)
    )


@router.delete("/uploads/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_upload(
    session_id: str,
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    owner_id: str = Depends(verify_token)
):
    """Delete a session, cancelling it first if it is still active."""
    await orchestrator.delete_session(session_id, owner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
