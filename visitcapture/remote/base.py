"""Visit API interface (port) for the REST server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

# name -> (filename, content, content_type)
FileParts = dict[str, tuple[str, bytes, str]]


@dataclass(frozen=True)
class ApiResponse:
    """The server's ``{meta: {code, status, message}, data}`` envelope."""
    status_code: int
    message: str = ""
    data: Any = None
    errors: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class VisitApi(Protocol):
    """Port: talks to the visit-tracking REST server."""

    async def get(self, endpoint: str, params: dict | None = None) -> ApiResponse: ...

    async def post(self, endpoint: str, fields: dict[str, str],
                   files: FileParts | None = None, method: str = "POST") -> ApiResponse: ...
