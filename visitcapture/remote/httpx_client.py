"""httpx implementation of VisitApi.

Sends JSON GETs and multipart POST/PUTs to the visit server and unwraps its
``{meta: {code, status, message}, data}`` envelope. No retry: transport
failures surface as ``SubmissionNetworkError`` for the operator to act on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from visitcapture.core.errors import SubmissionNetworkError
from visitcapture.remote.base import ApiResponse

if TYPE_CHECKING:
    from visitcapture.remote.base import FileParts

log = structlog.get_logger()


def _envelope_code(meta: dict, http_status: int) -> int:
    """``meta.code`` as an int. Missing falls back to the HTTP status; unusable values never read as success."""
    if "code" not in meta:
        return http_status
    code = meta["code"]
    if isinstance(code, bool):
        code = None
    try:
        return int(code)
    except (TypeError, ValueError):
        log.warning("visit_api_invalid_code", code=repr(code), status=http_status)
        return http_status if http_status != 200 else 502


class HttpxVisitApi:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, endpoint: str, params: dict | None = None) -> ApiResponse:
        try:
            resp = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            log.warning("visit_api_unreachable", endpoint=endpoint, error=str(exc))
            raise SubmissionNetworkError("cannot reach the server, check your connection") from exc
        return self._parse(endpoint, resp)

    async def post(self, endpoint: str, fields: dict[str, str],
                   files: FileParts | None = None, method: str = "POST") -> ApiResponse:
        try:
            resp = await self._client.request(method, endpoint, data=fields, files=files or None)
        except httpx.HTTPError as exc:
            log.warning("visit_api_unreachable", endpoint=endpoint, method=method, error=str(exc))
            raise SubmissionNetworkError("cannot reach the server, check your connection") from exc
        return self._parse(endpoint, resp)

    @staticmethod
    def _parse(endpoint: str, resp: httpx.Response) -> ApiResponse:
        try:
            body = resp.json()
        except ValueError:
            log.warning("visit_api_invalid_json", endpoint=endpoint, status=resp.status_code)
            return ApiResponse(status_code=resp.status_code if resp.status_code != 200 else 502,
                               message="invalid response from server")

        if not isinstance(body, dict):
            body = {}
        meta = body.get("meta")
        if not isinstance(meta, dict):
            meta = {}
        code = _envelope_code(meta, resp.status_code)
        if resp.status_code != 200 and code == 200:
            # HTTP failure wins over an optimistic envelope.
            code = resp.status_code
        errors = body.get("errors")
        log.debug("visit_api_response", endpoint=endpoint, status=resp.status_code, code=code)
        return ApiResponse(
            status_code=code,
            message=meta.get("message") or "",
            data=body.get("data"),
            errors=errors if isinstance(errors, dict) else {},
        )
