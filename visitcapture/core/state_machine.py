"""Visit capture state machine.

Drives one capture session per operator::

    SELECTING_OUTLET -> VALIDATING_LOCATION -> BLOCKED | READY_TO_CAPTURE
        -> CAPTURING -> COMPRESSING -> COMPOSITING
        -> COLLECTING_FIELDS (check-out only) -> SUBMITTING -> COMPLETED | FAILED

The machine owns the re-entrancy guard: only one start, capture or submit
operation may be in flight at a time, and a second request is rejected with
``CaptureInProgress`` instead of queueing. Cancellation is a flag checked at
every suspension point; the in-flight operation abandons the draft when it
next resumes.

Errors follow three policies:

- permission / device errors raise and leave the machine where it was;
- geofence and active-visit conflicts move to BLOCKED (operator must act
  outside the pipeline, then restart);
- compression / compositing / submission errors move to FAILED. Capture-stage
  failures discard the photos (retake), submission failures keep the draft
  (manual resubmit).
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, TYPE_CHECKING

import structlog

from visitcapture.core.compression import SizeBudgetCompressor
from visitcapture.core.errors import (
    ActiveVisitConflict,
    CaptureCancelled,
    CaptureInProgress,
    CompositingFailed,
    CompressionBudgetExceeded,
    DeviceUnavailable,
    EncoderFailed,
    InvalidTransition,
    LocationUnavailable,
    LookupFailed,
    OutletNotCaptureEligible,
    OutOfRange,
    PermissionDenied,
    Remediation,
    SubmissionNetworkError,
    SubmissionRejected,
    ValidationIncomplete,
    VisitCaptureError,
)
from visitcapture.core.geo import format_display
from visitcapture.core.geofence import GeofenceValidator
from visitcapture.core.models import CapturedPhoto, VisitDraft, VisitMode, WatermarkFields
from visitcapture.core.watermark import WatermarkCompositor
from visitcapture.devices.base import CaptureOptions, PermissionStatus

if TYPE_CHECKING:
    from visitcapture.core.directory import VisitDirectory
    from visitcapture.core.geofence import GeofenceResult
    from visitcapture.core.models import GeoPoint, Outlet
    from visitcapture.core.stats import PipelineStats
    from visitcapture.core.submission import SubmissionCoordinator
    from visitcapture.devices.base import CameraProvider, GeolocationProvider
    from visitcapture.imaging.base import ImageEncoder, OverlayRenderer, Snapshotter

log = structlog.get_logger()


class CaptureState(str, Enum):
    SELECTING_OUTLET = "selecting_outlet"
    VALIDATING_LOCATION = "validating_location"
    BLOCKED = "blocked"
    READY_TO_CAPTURE = "ready_to_capture"
    CAPTURING = "capturing"
    COMPRESSING = "compressing"
    COMPOSITING = "compositing"
    COLLECTING_FIELDS = "collecting_fields"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


S = CaptureState

# Every state except SUBMITTING may be abandoned back to SELECTING_OUTLET.
_ALLOWED: dict[CaptureState, frozenset[CaptureState]] = {
    S.SELECTING_OUTLET: frozenset({S.VALIDATING_LOCATION}),
    S.VALIDATING_LOCATION: frozenset({S.BLOCKED, S.READY_TO_CAPTURE, S.SELECTING_OUTLET}),
    S.READY_TO_CAPTURE: frozenset({S.CAPTURING, S.VALIDATING_LOCATION, S.BLOCKED, S.FAILED,
                                   S.SELECTING_OUTLET}),
    S.BLOCKED: frozenset({S.SELECTING_OUTLET}),
    S.CAPTURING: frozenset({S.COMPRESSING, S.READY_TO_CAPTURE, S.FAILED, S.SELECTING_OUTLET}),
    S.COMPRESSING: frozenset({S.COMPOSITING, S.FAILED, S.SELECTING_OUTLET}),
    S.COMPOSITING: frozenset({S.COLLECTING_FIELDS, S.SUBMITTING, S.FAILED, S.SELECTING_OUTLET}),
    S.COLLECTING_FIELDS: frozenset({S.SUBMITTING, S.FAILED, S.SELECTING_OUTLET}),
    S.SUBMITTING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset({S.SELECTING_OUTLET}),
    S.FAILED: frozenset({S.CAPTURING, S.SUBMITTING, S.SELECTING_OUTLET}),
}


@dataclass(frozen=True)
class Transition:
    source: CaptureState
    target: CaptureState
    reason: str = ""


@dataclass(frozen=True)
class CapturePolicy:
    camera_grace_seconds: float = 3.0
    camera_quality: float = 0.7
    camera_mirror: bool = True
    location_accuracy: str = "balanced"
    photo_budget_bytes: int = 100 * 1024
    enforce_geofence_on_checkout: bool = False
    timestamp_format: str = "%d/%m/%Y %H:%M:%S"


TransitionListener = Callable[[Transition], None]


class VisitCaptureStateMachine:
    """Orchestrates geofence, camera, compression, compositing and submission."""

    def __init__(
        self,
        *,
        camera: CameraProvider,
        geolocation: GeolocationProvider,
        encoder: ImageEncoder,
        renderer: OverlayRenderer,
        snapshotter: Snapshotter,
        directory: VisitDirectory,
        submitter: SubmissionCoordinator,
        compressor: SizeBudgetCompressor | None = None,
        compositor: WatermarkCompositor | None = None,
        validator: GeofenceValidator | None = None,
        policy: CapturePolicy | None = None,
        stats: PipelineStats | None = None,
        operator_id: str = "default",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._camera = camera
        self._geolocation = geolocation
        self._encoder = encoder
        self._renderer = renderer
        self._snapshotter = snapshotter
        self._directory = directory
        self._submitter = submitter
        self._compressor = compressor or SizeBudgetCompressor()
        self._compositor = compositor or WatermarkCompositor()
        self._validator = validator or GeofenceValidator()
        self._policy = policy or CapturePolicy()
        self._stats = stats
        self._operator_id = operator_id
        self._clock = clock

        self._state = CaptureState.SELECTING_OUTLET
        self._draft: VisitDraft | None = None
        self._outlet: Outlet | None = None
        self._position: GeoPoint | None = None
        self._geofence: GeofenceResult | None = None
        self._error: VisitCaptureError | None = None
        self._in_flight: str | None = None
        self._cancel_requested = False
        self._listeners: list[TransitionListener] = []

        self.history: list[Transition] = []
        self.last_visit_id: str | None = None

    # -- observation ---------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def draft(self) -> VisitDraft | None:
        return self._draft

    @property
    def outlet(self) -> Outlet | None:
        return self._outlet

    @property
    def geofence(self) -> GeofenceResult | None:
        return self._geofence

    @property
    def error(self) -> VisitCaptureError | None:
        return self._error

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    def subscribe(self, listener: TransitionListener) -> Callable[[], None]:
        """Register a transition listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> dict:
        """JSON-serializable view of the session for UI binding."""
        draft = self._draft
        geofence = None
        if self._geofence is not None:
            geofence = {
                "in_range": self._geofence.in_range,
                "distance": (round(self._geofence.distance, 1)
                             if self._geofence.distance is not None else None),
                "radius": self._geofence.radius_meters,
                "bypassed": self._geofence.bypassed,
            }
        return {
            "state": self._state.value,
            "busy": self.busy,
            "mode": draft.mode.value if draft else None,
            "outlet_id": self._outlet.id if self._outlet else None,
            "visit_id": draft.visit_id if draft else None,
            "geofence": geofence,
            "error": self._error.to_dict() if self._error else None,
            "has_photo": bool(draft and draft.composited_photo),
            "notes": draft.notes if draft else "",
            "transaction": draft.transaction_flag if draft else None,
            "last_visit_id": self.last_visit_id,
        }

    # -- entry points --------------------------------------------------------

    async def start_check_in(self, outlet_id: str) -> CaptureState:
        with self._guard("start_check_in"):
            self._abandon("restart")
            try:
                outlet = await self._directory.get_outlet(outlet_id)
                position = await self._locate(required=True)
                self._checkpoint()
            except CaptureCancelled:
                self._abandon("cancelled")
                raise

            self._open_session(VisitMode.CHECK_IN, outlet)
            self._transition(S.VALIDATING_LOCATION, "outlet_selected")
            if not self._evaluate_geofence(position, enforce=True):
                return self._state

            try:
                conflict = await self._directory.check_visit_status(outlet.id)
                self._checkpoint()
            except CaptureCancelled:
                self._abandon("cancelled")
                raise
            except SubmissionNetworkError as exc:
                self._fail(LookupFailed(f"visit status check failed: {exc.message}"))
                return self._state
            except LookupFailed as exc:
                self._fail(exc)
                return self._state

            if conflict:
                self._block(ActiveVisitConflict(conflict))
            return self._state

    async def start_check_out(self, visit_id: str) -> CaptureState:
        with self._guard("start_check_out"):
            self._abandon("restart")
            enforce = self._policy.enforce_geofence_on_checkout
            try:
                visit = await self._directory.get_open_visit(visit_id)
                position = await self._locate(required=enforce)
                self._checkpoint()
            except CaptureCancelled:
                self._abandon("cancelled")
                raise

            self._open_session(VisitMode.CHECK_OUT, visit.outlet, visit_id=visit.id)
            self._transition(S.VALIDATING_LOCATION, "visit_selected")
            if visit.checked_out:
                self._block(ActiveVisitConflict(f"visit {visit.id} is already checked out"))
                return self._state
            self._evaluate_geofence(position, enforce=enforce)
            return self._state

    def update_position(self, position: GeoPoint) -> CaptureState:
        """Record a new fix; re-validates the geofence while waiting to capture."""
        self._position = position
        if self._state is S.READY_TO_CAPTURE and not self.busy and self._outlet is not None:
            self._transition(S.VALIDATING_LOCATION, "position_changed")
            self._evaluate_geofence(position, enforce=self._enforces_geofence())
        return self._state

    async def capture(self) -> CaptureState:
        with self._guard("capture"):
            if not (self._state is S.READY_TO_CAPTURE or self._can_retake()):
                raise InvalidTransition(f"cannot capture from {self._state.value}")
            try:
                await self._capture_pipeline()
            except CaptureCancelled:
                self._abandon("cancelled")
                raise

        if self._state is S.COMPOSITING:
            # Check-in has no field gate: submit as soon as the photo exists.
            return await self.submit()
        return self._state

    def set_fields(self, notes: str | None = None, transaction: bool | None = None) -> CaptureState:
        draft = self._draft
        if draft is None or draft.mode is not VisitMode.CHECK_OUT:
            raise InvalidTransition("notes and transaction are only collected for check-out")
        if self._state in (S.SUBMITTING, S.COMPLETED, S.BLOCKED):
            raise InvalidTransition(f"cannot edit fields while {self._state.value}")
        if notes is not None:
            draft.notes = notes
        if transaction is not None:
            draft.transaction_flag = transaction
        return self._state

    async def submit(self) -> CaptureState:
        with self._guard("submit"):
            draft = self._draft
            resubmit = self._can_resubmit()
            if not (self._state in (S.COLLECTING_FIELDS, S.COMPOSITING) or resubmit):
                raise InvalidTransition(f"cannot submit from {self._state.value}")
            if draft is None or draft.composited_photo is None:
                raise InvalidTransition("no composited photo to submit")
            missing = draft.missing_fields()
            if missing:
                raise ValidationIncomplete(missing)
            try:
                self._checkpoint()
            except CaptureCancelled:
                self._abandon("cancelled")
                raise

            self._transition(S.SUBMITTING, "resubmit" if resubmit else "submit")
            try:
                visit_id = await self._submitter.submit(draft)
            except SubmissionRejected as exc:
                self._record_submission("rejected")
                self._fail(exc)
                return self._state
            except SubmissionNetworkError as exc:
                self._record_submission("network_error")
                self._fail(exc)
                return self._state
            except VisitCaptureError as exc:
                self._fail(exc)
                return self._state
            except Exception:
                log.error("visit_submit_failed", operator=self._operator_id, exc_info=True)
                self._record_submission("network_error")
                self._fail(SubmissionNetworkError("unexpected response from the server, try again"))
                return self._state

            self._record_submission("ok", draft.composited_photo.size)
            self.last_visit_id = visit_id
            self._draft = None
            self._error = None
            self._cancel_requested = False
            self._transition(S.COMPLETED, "submitted")
            if self._stats is not None:
                self._stats.record_session_ended(self._operator_id)
            return self._state

    def cancel(self) -> CaptureState:
        """Abandon the session. An in-flight operation stops at its next suspension point."""
        if self.busy:
            self._cancel_requested = True
            log.info("capture_cancel_requested", operator=self._operator_id,
                     operation=self._in_flight)
            return self._state
        self._abandon("cancelled")
        return self._state

    # -- pipeline ------------------------------------------------------------

    async def _capture_pipeline(self) -> None:
        draft = self._draft
        assert draft is not None and self._outlet is not None

        try:
            await asyncio.wait_for(self._camera.wait_ready(), timeout=self._policy.camera_grace_seconds)
        except asyncio.TimeoutError:
            raise DeviceUnavailable("camera is not ready, wait a few seconds and try again") from None
        self._checkpoint()

        self._transition(S.CAPTURING, "capture_requested")
        self._error = None
        options = CaptureOptions(quality=self._policy.camera_quality, mirror=self._policy.camera_mirror)
        try:
            raw = await self._camera.capture(options)
        except (PermissionDenied, DeviceUnavailable):
            self._transition(S.READY_TO_CAPTURE, "camera_unavailable")
            raise
        except Exception as exc:
            log.error("camera_capture_failed", operator=self._operator_id, exc_info=True)
            self._transition(S.READY_TO_CAPTURE, "camera_unavailable")
            raise DeviceUnavailable("camera capture failed, try again") from exc
        self._checkpoint()

        if self._stats is not None:
            self._stats.record_capture()
        draft.raw_photo = raw
        draft.geo_point_at_capture = self._position

        self._transition(S.COMPRESSING, "photo_captured")
        try:
            result = await self._compressor.compress(raw, self._policy.photo_budget_bytes, self._encoder)
        except EncoderFailed as exc:
            self._fail_capture(exc)
            return
        if self._stats is not None:
            self._stats.record_compression(result.attempts, result.ok)
        if not result.ok:
            self._fail_capture(CompressionBudgetExceeded(
                result.size, result.budget_bytes,
                "photo could not be compressed enough, retake it with better lighting",
            ))
            return
        self._checkpoint()

        width = self._compressor.policy.target_width
        if raw.width_px:
            width = min(raw.width_px, width)
        compressed = CapturedPhoto(result.accept(), "image/jpeg", width)
        # Single owner: the raw photo is released once the compressed one exists.
        draft.compressed_photo, draft.raw_photo = compressed, None

        self._transition(S.COMPOSITING, "photo_compressed")
        try:
            composited = await self._compositor.composite(
                compressed, self._watermark_fields(), self._renderer, self._snapshotter,
            )
        except CompositingFailed as exc:
            if self._stats is not None:
                self._stats.record_compositing_failure()
            self._fail_capture(exc)
            return
        self._checkpoint()

        draft.composited_photo, draft.compressed_photo = composited, None
        if draft.mode is VisitMode.CHECK_OUT:
            self._transition(S.COLLECTING_FIELDS, "photo_composited")

    def _watermark_fields(self) -> WatermarkFields:
        outlet = self._outlet
        draft = self._draft
        label = f"{outlet.code} • {outlet.name}" if outlet.code else (outlet.name or "-")
        point = draft.geo_point_at_capture
        return WatermarkFields(
            outlet_label=label,
            outlet_sub_label=outlet.district or None,
            timestamp_text=self._clock().strftime(self._policy.timestamp_format),
            location_text=format_display(point) if point is not None else "-",
        )

    async def _locate(self, *, required: bool) -> GeoPoint | None:
        try:
            status = await self._geolocation.request_permission()
            if status is not PermissionStatus.GRANTED:
                raise PermissionDenied("location", "location permission is required to verify the visit")
            try:
                position = await self._geolocation.get_current_position(self._policy.location_accuracy)
            except LocationUnavailable:
                raise
            except Exception as exc:
                raise LocationUnavailable("could not get your location, make sure GPS is on") from exc
        except (PermissionDenied, LocationUnavailable) as exc:
            if required:
                raise
            log.warning("position_unavailable", operator=self._operator_id, error=exc.code)
            return self._position

        self._position = position
        return position

    def _evaluate_geofence(self, position: GeoPoint | None, *, enforce: bool) -> bool:
        """Decide READY_TO_CAPTURE vs BLOCKED from VALIDATING_LOCATION."""
        outlet = self._outlet
        assert outlet is not None
        self._geofence = self._validator.validate(outlet, position) if position is not None else None
        result = self._geofence

        if enforce:
            if result is None or not result.eligible:
                self._block(OutletNotCaptureEligible(outlet.id))
                return False
            if not result.in_range:
                self._block(OutOfRange(result.distance, result.radius_meters))
                return False

        reason = "geofence_not_enforced" if not enforce else (
            "geofence_bypassed" if result.bypassed else "in_range")
        self._transition(S.READY_TO_CAPTURE, reason)
        return True

    # -- bookkeeping ---------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        if self._in_flight is not None:
            log.warning("capture_rejected_in_flight", operator=self._operator_id,
                        operation=operation, in_flight=self._in_flight)
            raise CaptureInProgress(f"{self._in_flight} is already in progress")
        self._in_flight = operation
        self._cancel_requested = False
        try:
            yield
        finally:
            self._in_flight = None

    def _checkpoint(self) -> None:
        if self._cancel_requested:
            raise CaptureCancelled("capture cancelled by operator")

    def _transition(self, target: CaptureState, reason: str = "") -> None:
        if target not in _ALLOWED[self._state]:
            raise InvalidTransition(f"{self._state.value} -> {target.value}")
        transition = Transition(self._state, target, reason)
        self._state = target
        self.history.append(transition)
        log.info("capture_transition", operator=self._operator_id,
                 source=transition.source.value, target=target.value, reason=reason)
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                log.error("capture_listener_failed", operator=self._operator_id, exc_info=True)

    def _open_session(self, mode: VisitMode, outlet: Outlet, visit_id: str | None = None) -> None:
        self._outlet = outlet
        self._draft = VisitDraft(outlet_id=outlet.id, mode=mode, visit_id=visit_id)
        if self._stats is not None:
            self._stats.record_session_started(self._operator_id, mode.value)
        log.info("capture_session_started", operator=self._operator_id, mode=mode.value,
                 outlet=outlet.id, visit=visit_id)

    def _abandon(self, reason: str) -> None:
        """Destroy the draft and return to SELECTING_OUTLET."""
        had_draft = self._draft is not None
        self._draft = None
        self._outlet = None
        self._geofence = None
        self._error = None
        self._cancel_requested = False
        if self._state is not S.SELECTING_OUTLET:
            self._transition(S.SELECTING_OUTLET, reason)
        if had_draft and self._stats is not None:
            self._stats.record_session_ended(self._operator_id)

    def _block(self, error: VisitCaptureError) -> None:
        self._error = error
        if self._stats is not None:
            self._stats.record_blocked(error.code)
        self._transition(S.BLOCKED, error.code)

    def _fail(self, error: VisitCaptureError) -> None:
        self._error = error
        if self._stats is not None:
            self._stats.record_failed(error.code)
        self._transition(S.FAILED, error.code)
        if self._cancel_requested:
            # Cancel arrived while the failing step was in flight.
            self._abandon("cancelled")

    def _fail_capture(self, error: VisitCaptureError) -> None:
        if self._draft is not None:
            self._draft.discard_photos()
        self._fail(error)

    def _record_submission(self, outcome: str, size_bytes: int = 0) -> None:
        if self._stats is not None:
            self._stats.record_submission(outcome, size_bytes)

    def _enforces_geofence(self) -> bool:
        draft = self._draft
        if draft is not None and draft.mode is VisitMode.CHECK_OUT:
            return self._policy.enforce_geofence_on_checkout
        return True

    def _can_retake(self) -> bool:
        return (self._state is S.FAILED and self._draft is not None
                and self._error is not None
                and self._error.remediation is Remediation.RETAKE_PHOTO)

    def _can_resubmit(self) -> bool:
        return (self._state is S.FAILED and self._draft is not None
                and self._draft.composited_photo is not None
                and self._error is not None
                and self._error.remediation is Remediation.RESUBMIT)
