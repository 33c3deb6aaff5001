"""Capture session API endpoints.

This is the thin FastAPI adapter between the UI shell and an operator's state
machine. The shell pushes position fixes and camera frames, and reads the
session snapshot after every call. Blocked and failed sessions are normal
states (200 with the error in the snapshot); operations the machine refuses
are returned as error responses.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from visitcapture.core.errors import (
    CaptureInProgress,
    CompressionBudgetExceeded,
    DeviceUnavailable,
    InvalidTransition,
    LocationUnavailable,
    LookupFailed,
    MediaInvalid,
    PermissionDenied,
    SubmissionNetworkError,
    ValidationIncomplete,
    VisitCaptureError,
)
from visitcapture.core.models import CapturedPhoto, GeoPoint
from visitcapture.devices.base import PermissionStatus

router = APIRouter(prefix="/api/v1/capture")

_STATUS_BY_ERROR: list[tuple[type[VisitCaptureError], int]] = [
    (PermissionDenied, 403),
    (ValidationIncomplete, 422),
    (MediaInvalid, 422),
    (CompressionBudgetExceeded, 413),
    (LookupFailed, 502),
    (SubmissionNetworkError, 502),
    (DeviceUnavailable, 503),
    (LocationUnavailable, 503),
    (CaptureInProgress, 409),
    (InvalidTransition, 409),
]


def error_response(exc: VisitCaptureError) -> JSONResponse:
    status = 409
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    return JSONResponse(content=exc.to_dict(), status_code=status)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(content={"error": "bad_request", "message": message}, status_code=400)


async def _json_body(request: Request) -> dict | None:
    try:
        body = json.loads(await request.body() or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _session(request: Request):
    from visitcapture.main import get_registry

    operator_id = request.headers.get("x-operator-id", "default")
    return get_registry().get(operator_id)


def _parse_transaction(value) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().upper()
    if text in ("YES", "TRUE", "1"):
        return True
    if text in ("NO", "FALSE", "0"):
        return False
    raise ValueError(f"invalid transaction value {value!r}")


@router.post("/position")
async def report_position(request: Request) -> Response:
    """Receive a GPS fix from the UI shell. Re-validates the geofence when ready to capture."""
    body = await _json_body(request)
    if body is None:
        return _bad_request("invalid JSON")
    try:
        point = GeoPoint(float(body["latitude"]), float(body["longitude"]))
    except (KeyError, TypeError, ValueError):
        return _bad_request("latitude and longitude are required and must be valid coordinates")

    session = _session(request)
    session.geolocation.report(point)
    session.machine.update_position(point)
    return JSONResponse(content=session.machine.snapshot())


@router.post("/permissions")
async def report_permissions(request: Request) -> Response:
    """Receive OS permission results for ``camera`` and ``location``."""
    body = await _json_body(request)
    if body is None:
        return _bad_request("invalid JSON")
    session = _session(request)
    try:
        if "camera" in body:
            session.camera.set_permission(PermissionStatus(body["camera"]))
        if "location" in body:
            session.geolocation.set_permission(PermissionStatus(body["location"]))
    except ValueError:
        return _bad_request("permission must be 'granted' or 'denied'")
    return JSONResponse(content=session.machine.snapshot())


@router.post("/checkin")
async def start_check_in(request: Request) -> Response:
    body = await _json_body(request)
    if body is None or not body.get("outlet_id"):
        return _bad_request("outlet_id is required")
    session = _session(request)
    try:
        await session.machine.start_check_in(str(body["outlet_id"]))
    except VisitCaptureError as exc:
        return error_response(exc)
    return JSONResponse(content=session.machine.snapshot())


@router.post("/checkout")
async def start_check_out(request: Request) -> Response:
    body = await _json_body(request)
    if body is None or not body.get("visit_id"):
        return _bad_request("visit_id is required")
    session = _session(request)
    try:
        await session.machine.start_check_out(str(body["visit_id"]))
    except VisitCaptureError as exc:
        return error_response(exc)
    return JSONResponse(content=session.machine.snapshot())


@router.post("/photo")
async def capture_photo(request: Request) -> Response:
    """Receive a camera frame and run capture -> compress -> composite (-> submit for check-in)."""
    data = await request.body()
    if not data:
        return _bad_request("photo body is empty")
    try:
        width = int(request.headers.get("x-photo-width", "0"))
    except ValueError:
        width = 0

    session = _session(request)
    mime_type = request.headers.get("content-type", "image/jpeg")
    session.camera.offer(CapturedPhoto(data=data, mime_type=mime_type, width_px=width))
    try:
        await session.machine.capture()
    except VisitCaptureError as exc:
        return error_response(exc)
    return JSONResponse(content=session.machine.snapshot())


@router.put("/fields")
async def set_fields(request: Request) -> Response:
    body = await _json_body(request)
    if body is None:
        return _bad_request("invalid JSON")
    try:
        transaction = _parse_transaction(body.get("transaction"))
    except ValueError as exc:
        return _bad_request(str(exc))
    notes = body.get("notes")
    session = _session(request)
    try:
        session.machine.set_fields(notes=str(notes) if notes is not None else None,
                                   transaction=transaction)
    except VisitCaptureError as exc:
        return error_response(exc)
    return JSONResponse(content=session.machine.snapshot())


@router.post("/submit")
async def submit(request: Request) -> Response:
    session = _session(request)
    try:
        await session.machine.submit()
    except VisitCaptureError as exc:
        return error_response(exc)
    return JSONResponse(content=session.machine.snapshot())


@router.get("/session")
async def get_session(request: Request) -> dict:
    session = _session(request)
    snapshot = session.machine.snapshot()
    snapshot["history"] = [
        {"source": t.source.value, "target": t.target.value, "reason": t.reason}
        for t in session.machine.history[-50:]
    ]
    return snapshot


@router.delete("/session")
async def cancel_session(request: Request) -> dict:
    session = _session(request)
    session.machine.cancel()
    return session.machine.snapshot()
