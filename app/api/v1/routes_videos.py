from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import FormData
from starlette.requests import ClientDisconnect

from app.api import deps
from app.core.config import Settings
from app.core.errors import BadRequestError, IngestFailed, IngestStep, ReelhouseError
from app.core.logging import get_logger

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])
logger = get_logger(component="videos_api")

# Allowance for multipart boundaries and part headers on top of the file itself.
MULTIPART_OVERHEAD_BYTES = 1024 * 1024

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": schemas.ErrorResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": schemas.ErrorResponse},
    status.HTTP_403_FORBIDDEN: {"model": schemas.ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": schemas.ErrorResponse},
}


def _reject_oversized_body(request: Request, max_bytes: int) -> None:
    declared = request.headers.get("content-length")
    if declared is None:
        # The size cap has to apply before the multipart parser spools the body.
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="content_length_required")
    try:
        length = int(declared)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_content_length")
    if length > max_bytes + MULTIPART_OVERHEAD_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="video_too_large")


async def read_upload_form(request: Request, *, video_id: str) -> FormData:
    try:
        return await request.form(max_files=1)
    except ClientDisconnect as exc:
        failure = IngestFailed(IngestStep.staging, BadRequestError("upload_interrupted"))
        logger.warning("upload_interrupted", video_id=video_id, step=failure.step.value)
        raise deps.http_error(failure) from exc


@router.post("", response_model=schemas.VideoRecord, status_code=status.HTTP_201_CREATED)
async def create_video(
    payload: schemas.VideoCreateRequest,
    videos: deps.VideoStoreDependency,
    context: deps.AuthDependency,
) -> schemas.VideoRecord:
    try:
        return await videos.create(user_id=context.user_id, title=payload.title, description=payload.description)
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc


@router.get("/{video_id}", response_model=schemas.VideoRecord, responses=_ERROR_RESPONSES)
async def get_video(
    video_id: str,
    pipeline: deps.IngestPipelineDependency,
    context: deps.AuthDependency,
) -> schemas.VideoRecord:
    try:
        return await pipeline.load_owned_record(caller_id=context.user_id, video_id=video_id)
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc


@router.post(
    "/{video_id}/video",
    response_model=schemas.VideoRecord,
    responses=_ERROR_RESPONSES,
    summary="Upload, fast-start and publish the video file",
)
async def upload_video(
    video_id: str,
    request: Request,
    pipeline: deps.IngestPipelineDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.VideoRecord:
    try:
        record = await pipeline.load_owned_record(caller_id=context.user_id, video_id=video_id)
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc

    _reject_oversized_body(request, settings.max_video_upload_bytes)

    form = await read_upload_form(request, video_id=video_id)
    try:
        return await pipeline.ingest(record, form.get("video"))
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc
    finally:
        await form.close()


@router.post(
    "/{video_id}/thumbnail",
    response_model=schemas.VideoRecord,
    responses=_ERROR_RESPONSES,
    summary="Attach a JPEG or PNG thumbnail",
)
async def upload_thumbnail(
    video_id: str,
    request: Request,
    service: deps.ThumbnailServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoRecord:
    try:
        record = await service.load_owned_record(caller_id=context.user_id, video_id=video_id)
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc

    form = await read_upload_form(request, video_id=video_id)
    try:
        return await service.attach(record, form.get("thumbnail"))
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc
    finally:
        await form.close()


__all__ = ["router"]
