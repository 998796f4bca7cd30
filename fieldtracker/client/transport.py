"""HTTP transport between the offline client and the sync server."""
from datetime import datetime
from typing import Optional
import logging

import httpx
from pydantic import ValidationError

from fieldtracker.client.exceptions import AuthenticationError, RejectedError, TransportError
from fieldtracker.schemas.sync import SyncPullResponse, SyncPushResponse
from fieldtracker.sync.timeutils import to_iso

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> tuple[str, list[str]]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, []
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail.get("message") or str(detail), list(detail.get("errors") or [])
    if isinstance(detail, str):
        errors = body.get("errors")
        return detail, [str(e) for e in errors] if isinstance(errors, list) else []
    return str(body), []


class SyncTransport:
    """
    Talks to ``/api/v1``. Failures come back as one of three exceptions:
    TransportError (network, timeout, 5xx), AuthenticationError (401/403)
    or RejectedError (any other 4xx).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}/api/v1{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        if response.status_code >= 500:
            message, _ = _error_detail(response)
            raise TransportError(f"Server error {response.status_code}: {message}", response.status_code)
        if response.status_code in (401, 403):
            message, errors = _error_detail(response)
            raise AuthenticationError(message, response.status_code, errors)
        if response.status_code >= 400:
            message, _ = _error_detail(response)
            raise RejectedError(message, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise TransportError("Server returned a non-JSON response", response.status_code) from e

    async def login_worker(self, employee_id: str, pin: str, device_id: str) -> dict:
        data = await self._request(
            "POST", "/auth/worker/login",
            json={"employeeId": employee_id, "pin": pin, "deviceId": device_id},
        )
        self.token = data["accessToken"]
        return data

    async def push(self, body: dict) -> SyncPushResponse:
        data = await self._request("POST", "/sync/push", json=body)
        try:
            return SyncPushResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Malformed push response: {e}") from e

    async def pull(self, since: Optional[datetime] = None, device_id: Optional[str] = None) -> SyncPullResponse:
        params = {}
        if since is not None:
            params["since"] = to_iso(since)
        if device_id:
            params["deviceId"] = device_id
        data = await self._request("GET", "/sync/pull", params=params)
        try:
            return SyncPullResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Malformed pull response: {e}") from e
