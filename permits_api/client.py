"""HTTP client for the permit portal API.

All calls go through :class:`PermitsClient`, which builds requests and turns
error responses into :class:`PermitsApiError`. Network failures are reported
as :class:`PermitsTransportError` and are never treated as success.
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
GENERIC_ERROR_MESSAGE = "Request failed"


class PermitsClientError(Exception):
    pass


class PermitsApiError(PermitsClientError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class PermitsTransportError(PermitsClientError):
    pass


class PermitsClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if client is None:
            if not base_url:
                raise ValueError("base_url is required when no client is supplied")
            client = httpx.Client(base_url=base_url, timeout=timeout)
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client

    def __enter__(self) -> "PermitsClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("permits_api_unreachable method=%s path=%s", method, path)
            raise PermitsTransportError(f"Could not reach permit API: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            raise PermitsApiError(response.status_code, message or GENERIC_ERROR_MESSAGE)
        if not isinstance(body, dict):
            raise PermitsApiError(response.status_code, "Unexpected response from permit API")
        return body

    def create_permit(
        self,
        fields: Mapping[str, Any],
        image: Optional[Path | str] = None,
        content_type: Optional[str] = None,
    ) -> dict[str, Any]:
        payload = {key: _wire_value(value) for key, value in fields.items() if value is not None}
        if image is None:
            return self._request("POST", "/permits", json=payload)["permit"]

        image_path = Path(image)
        mime = content_type or _guess_image_type(image_path)
        with image_path.open("rb") as handle:
            files = {"image": (image_path.name, handle, mime)}
            return self._request("POST", "/permits", data=payload, files=files)["permit"]

    def list_permits(self, q: str = "", page: int = 1, limit: int = 20) -> dict[str, Any]:
        return self._request("GET", "/permits", params={"q": q, "page": page, "limit": limit})

    def check_status(self, query: str) -> dict[str, Any]:
        return self._request("GET", "/permits/status", params={"query": query})["permit"]

    def get_permit(self, permit_id: str) -> dict[str, Any]:
        return self._request("GET", f"/permits/{_quote(permit_id)}")["permit"]

    def update_permit(self, permit_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        payload = {key: _wire_value(value) for key, value in fields.items()}
        return self._request("PATCH", f"/permits/{_quote(permit_id)}", json=payload)["permit"]

    def delete_permit(self, permit_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/permits/{_quote(permit_id)}")


def _quote(value: str) -> str:
    return quote(value, safe="")


def _wire_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _guess_image_type(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _fmt_date(value: Optional[str]) -> str:
    if not value:
        return "-"
    try:
        return date.fromisoformat(value[:10]).strftime("%d %b %Y")
    except ValueError:
        return "-"


def format_permit(permit: Mapping[str, Any]) -> str:
    """Render a permit as the printable, government-style detail sheet."""
    rows = [
        "WORK PERMIT",
        f"Work Permit ID: {permit.get('permitId') or '-'}",
        f"Status: {permit.get('status') or '-'}",
        "",
        "Applicant Details",
        f"  Full Name:          {permit.get('fullName') or '-'}",
        f"  Passport No.:       {permit.get('passportNumber') or '-'}",
        f"  Date of Birth:      {_fmt_date(permit.get('dateOfBirth'))}",
        f"  Nationality:        {permit.get('nationality') or '-'}",
        "",
        "Employment Details",
        f"  Employer:           {permit.get('employer') or '-'}",
        f"  Job Title:          {permit.get('jobTitle') or '-'}",
        f"  Permit Start Date:  {_fmt_date(permit.get('permitStartDate'))}",
        f"  Permit Expiry Date: {_fmt_date(permit.get('permitExpiryDate'))}",
    ]
    if permit.get("image"):
        rows.extend(["", f"Photo: {permit['image']}"])
    return "\n".join(rows)
