"""Outlet-edit media endpoints.

The outlet-edit screen sends its storefront photo and video here to be brought
under budget before it uploads them with the outlet form. Location
corrections made on that screen invalidate the cached outlet snapshot.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from visitcapture.api.capture import error_response
from visitcapture.core.errors import VisitCaptureError

router = APIRouter(prefix="/api/v1")


@router.post("/media/photo")
async def prepare_photo(request: Request) -> Response:
    from visitcapture.main import get_media

    data = await request.body()
    try:
        photo = await get_media().prepare_photo(data, request.headers.get("content-type", "image/jpeg"))
    except VisitCaptureError as exc:
        return error_response(exc)
    return Response(content=photo.data, media_type=photo.mime_type,
                    headers={"x-compressed-size": str(photo.size)})


@router.post("/media/video")
async def prepare_video(request: Request) -> Response:
    from visitcapture.main import get_media

    data = await request.body()
    try:
        video = await get_media().prepare_video(data)
    except VisitCaptureError as exc:
        return error_response(exc)
    return Response(content=video, media_type=request.headers.get("content-type", "video/mp4"),
                    headers={"x-compressed-size": str(len(video))})


@router.post("/outlets/{outlet_id}/invalidate")
async def invalidate_outlet(outlet_id: str) -> JSONResponse:
    """Drop the cached snapshot of an outlet after it was edited."""
    from visitcapture.main import get_directory

    invalidated = get_directory().cache.invalidate(outlet_id)
    return JSONResponse(content={"outlet_id": outlet_id, "invalidated": invalidated})
