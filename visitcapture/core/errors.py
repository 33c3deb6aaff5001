"""Capture pipeline error taxonomy.

Every failure the pipeline can surface is a ``VisitCaptureError`` carrying a
stable ``code`` and a ``remediation`` the UI can offer the operator.
No framework dependencies.
"""

from __future__ import annotations

from enum import Enum


class Remediation(str, Enum):
    REQUEST_PERMISSION = "request_permission"
    OPEN_SETTINGS = "open_settings"
    RETRY_CAPTURE = "retry_capture"
    EDIT_OUTLET = "edit_outlet"
    MOVE_CLOSER = "move_closer"
    CHECK_OUT_ELSEWHERE = "check_out_elsewhere"
    RETAKE_PHOTO = "retake_photo"
    COMPLETE_FIELDS = "complete_fields"
    RESUBMIT = "resubmit"
    RESTART = "restart"


class VisitCaptureError(Exception):
    """Base class for all pipeline errors."""

    code = "visit_capture_error"
    remediation = Remediation.RESTART

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "remediation": self.remediation.value,
        }


class PermissionDenied(VisitCaptureError):
    code = "permission_denied"
    remediation = Remediation.REQUEST_PERMISSION

    def __init__(self, resource: str, message: str = "", *, permanent: bool = False) -> None:
        super().__init__(message or f"{resource} permission denied")
        self.resource = resource
        if permanent:
            self.remediation = Remediation.OPEN_SETTINGS


class DeviceUnavailable(VisitCaptureError):
    code = "device_unavailable"
    remediation = Remediation.RETRY_CAPTURE


class LocationUnavailable(VisitCaptureError):
    code = "location_unavailable"
    remediation = Remediation.RETRY_CAPTURE


class OutletNotCaptureEligible(VisitCaptureError):
    code = "outlet_not_capture_eligible"
    remediation = Remediation.EDIT_OUTLET

    def __init__(self, outlet_id: str) -> None:
        super().__init__(f"outlet {outlet_id} has no location, complete the outlet data first")
        self.outlet_id = outlet_id


class OutOfRange(VisitCaptureError):
    code = "out_of_range"
    remediation = Remediation.MOVE_CLOSER

    def __init__(self, distance: float, radius: int) -> None:
        super().__init__(
            f"operator is {round(distance)}m from the outlet, maximum allowed is {radius}m"
        )
        self.distance = distance
        self.radius = radius

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["distance"] = round(self.distance, 1)
        result["radius"] = self.radius
        return result


class ActiveVisitConflict(VisitCaptureError):
    code = "active_visit_conflict"
    remediation = Remediation.CHECK_OUT_ELSEWHERE


class CompressionBudgetExceeded(VisitCaptureError):
    code = "compression_budget_exceeded"
    remediation = Remediation.RETAKE_PHOTO

    def __init__(self, size: int, budget: int, message: str = "") -> None:
        super().__init__(message or f"artifact is {size} bytes, budget is {budget} bytes")
        self.size = size
        self.budget = budget


class MediaInvalid(VisitCaptureError):
    code = "media_invalid"
    remediation = Remediation.RETAKE_PHOTO


class EncoderFailed(VisitCaptureError):
    code = "encoder_failed"
    remediation = Remediation.RETAKE_PHOTO


class CompositingFailed(VisitCaptureError):
    code = "compositing_failed"
    remediation = Remediation.RETAKE_PHOTO


class ValidationIncomplete(VisitCaptureError):
    code = "validation_incomplete"
    remediation = Remediation.COMPLETE_FIELDS

    def __init__(self, missing: list[str]) -> None:
        super().__init__("missing required fields: " + ", ".join(missing))
        self.missing = list(missing)

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["missing"] = self.missing
        return result


class SubmissionRejected(VisitCaptureError):
    code = "submission_rejected"
    remediation = Remediation.RESUBMIT

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionNetworkError(VisitCaptureError):
    code = "submission_network_error"
    remediation = Remediation.RESUBMIT


class LookupFailed(VisitCaptureError):
    code = "lookup_failed"
    remediation = Remediation.RESTART


class CaptureInProgress(VisitCaptureError):
    code = "capture_in_progress"
    remediation = Remediation.RETRY_CAPTURE


class CaptureCancelled(VisitCaptureError):
    code = "capture_cancelled"
    remediation = Remediation.RESTART


class InvalidTransition(VisitCaptureError):
    code = "invalid_transition"
    remediation = Remediation.RESTART
