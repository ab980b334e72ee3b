from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from app.api import deps
from app.core.errors import ReelhouseError


router = APIRouter(prefix="/thumbnails", tags=["thumbnails"])


@router.get("/{video_id}", summary="Serve a stored thumbnail", response_class=Response)
async def get_thumbnail(video_id: str, service: deps.ThumbnailServiceDependency) -> Response:
    try:
        thumbnail = await service.fetch(video_id)
    except ReelhouseError as exc:
        raise deps.http_error(exc) from exc
    if thumbnail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="thumbnail_not_found")
    return Response(content=thumbnail.data, media_type=thumbnail.media_type)


__all__ = ["router"]
