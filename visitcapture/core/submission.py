"""Visit submission: builds the multipart payload and reads the envelope.

Check-in creates the visit (``POST /visits``), check-out updates it
(``PUT /visits/{id}``). There is no retry: a failure leaves the draft intact so
the operator can resubmit by hand.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TYPE_CHECKING

import structlog

from visitcapture.core.errors import (
    SubmissionNetworkError,
    SubmissionRejected,
    ValidationIncomplete,
)
from visitcapture.core.geo import format_lat_lon
from visitcapture.core.models import VisitMode

if TYPE_CHECKING:
    from visitcapture.core.models import VisitDraft
    from visitcapture.remote.base import FileParts, VisitApi

log = structlog.get_logger()

GENERIC_FAILURE = "Visit submission failed"


@dataclass(frozen=True)
class SubmissionPayload:
    method: str
    endpoint: str
    fields: dict[str, str]
    files: FileParts


class SubmissionCoordinator:
    def __init__(self, api: VisitApi, *, checkin_type: str = "EXTRACALL",
                 clock: Callable[[], float] = time.time) -> None:
        self._api = api
        self._checkin_type = checkin_type
        self._clock = clock

    def build_payload(self, draft: VisitDraft) -> SubmissionPayload:
        missing = draft.missing_fields()
        if missing:
            raise ValidationIncomplete(missing)

        photo = draft.composited_photo
        location = format_lat_lon(draft.geo_point_at_capture) if draft.geo_point_at_capture else ""
        stamp_ms = int(self._clock() * 1000)

        if draft.mode is VisitMode.CHECK_IN:
            fields = {
                "outlet_id": draft.outlet_id,
                "type": self._checkin_type,
                "checkin_location": location,
            }
            files = {"checkin_photo": (f"checkin-{stamp_ms}.jpg", photo.data, photo.mime_type)}
            return SubmissionPayload("POST", "/visits", fields, files)

        if not draft.visit_id:
            raise ValidationIncomplete(["visit_id"])
        fields = {
            "outlet_id": draft.outlet_id,
            "checkout_location": location,
            "transaction": "YES" if draft.transaction_flag else "NO",
            "report": draft.notes.strip(),
        }
        files = {"checkout_photo": (f"checkout-{stamp_ms}.jpg", photo.data, photo.mime_type)}
        return SubmissionPayload("PUT", f"/visits/{draft.visit_id}", fields, files)

    async def submit(self, draft: VisitDraft) -> str:
        """Send the draft. Returns the visit id, raises on any failure."""
        payload = self.build_payload(draft)
        log.info("visit_submitting", mode=draft.mode.value, outlet=draft.outlet_id,
                 endpoint=payload.endpoint)

        try:
            response = await self._api.post(payload.endpoint, payload.fields,
                                             payload.files, method=payload.method)
        except SubmissionNetworkError:
            log.warning("visit_submit_network_error", outlet=draft.outlet_id)
            raise

        if not response.ok:
            log.warning("visit_submit_rejected", outlet=draft.outlet_id,
                        status=response.status_code, message=response.message)
            raise SubmissionRejected(response.message or GENERIC_FAILURE, response.status_code)

        visit_id = ""
        if isinstance(response.data, dict) and response.data.get("id") is not None:
            visit_id = str(response.data["id"])
        elif draft.visit_id:
            visit_id = draft.visit_id
        log.info("visit_submitted", mode=draft.mode.value, visit=visit_id)
        return visit_id
