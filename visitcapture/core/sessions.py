"""Per-operator capture sessions.

One state machine per operator; the registry builds it lazily together with
the device adapters the UI shell pushes frames and fixes into.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from visitcapture.core.state_machine import VisitCaptureStateMachine
    from visitcapture.devices.uploaded import ReportedPositionProvider, UploadedPhotoCamera


@dataclass
class CaptureSession:
    operator_id: str
    machine: VisitCaptureStateMachine
    camera: UploadedPhotoCamera
    geolocation: ReportedPositionProvider


SessionFactory = Callable[[str], CaptureSession]


class CaptureSessionRegistry:
    def __init__(self, factory: SessionFactory) -> None:
        self._lock = threading.Lock()
        self._factory = factory
        self._sessions: dict[str, CaptureSession] = {}

    def get(self, operator_id: str) -> CaptureSession:
        with self._lock:
            session = self._sessions.get(operator_id)
            if session is None:
                session = self._factory(operator_id)
                self._sessions[operator_id] = session
            return session

    def drop(self, operator_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(operator_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
