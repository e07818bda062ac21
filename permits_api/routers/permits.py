from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from ..config import Settings
from ..dependencies.services import get_permit_service, get_settings_dep
from ..models.permits import Permit
from ..schemas.permits import PermitCreate, PermitUpdate, validation_message
from ..services.identifiers import IdentifierAllocationError
from ..services.permits import (
    PermitConflictError,
    PermitNotFoundError,
    PermitService,
    PermitValidationError,
)
from ..services.storage import BlobStoreError, InvalidUploadError, UploadedImage, read_upload

router = APIRouter(prefix="/permits")

logger = logging.getLogger(__name__)


def _iso_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _iso_date(value: date | None) -> str | None:
    return value.isoformat() if value else None


def serialize_permit(permit: Permit) -> dict[str, Any]:
    return {
        "permitId": permit.permit_id,
        "fullName": permit.full_name,
        "passportNumber": permit.passport_number,
        "nationality": permit.nationality,
        "dateOfBirth": _iso_date(permit.date_of_birth),
        "employer": permit.employer,
        "jobTitle": permit.job_title,
        "permitStartDate": _iso_date(permit.permit_start_date),
        "permitExpiryDate": _iso_date(permit.permit_expiry_date),
        "applicationDate": _iso_datetime(permit.application_date),
        "status": permit.status.value if permit.status is not None else None,
        "image": permit.image,
        "createdAt": _iso_datetime(permit.created_at),
        "updatedAt": _iso_datetime(permit.updated_at),
    }


def _parse_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


async def _read_create_request(request: Request, settings: Settings) -> tuple[dict[str, Any], Optional[UploadedImage]]:
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields: dict[str, Any] = {}
        image: Optional[UploadedImage] = None
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key != "image" or not value.filename:
                    continue
                data = await run_in_threadpool(read_upload, value.file, settings.max_image_bytes)
                image = UploadedImage(
                    filename=value.filename,
                    content_type=value.content_type or "application/octet-stream",
                    data=data,
                )
            else:
                fields[key] = value
        return fields, image

    body = await request.body()
    if len(body) > settings.json_body_limit_bytes:
        raise HTTPException(status_code=413, detail="Request body too large")
    if not body.strip():
        return {}, None
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload, None


@router.get("")
def list_permits(
    q: str | None = Query(default=None),
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
    service: PermitService = Depends(get_permit_service),
) -> dict[str, Any]:
    result = service.list(q=q, page=_parse_int(page, 1), limit=_parse_int(limit, None))
    return {
        "data": [serialize_permit(permit) for permit in result.items],
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
    }


@router.post("", status_code=201)
async def create_permit(
    request: Request,
    service: PermitService = Depends(get_permit_service),
    settings: Settings = Depends(get_settings_dep),
) -> dict[str, Any]:
    try:
        fields, image = await _read_create_request(request, settings)
        payload = PermitCreate.model_validate(fields)
    except InvalidUploadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=validation_message(exc)) from exc

    try:
        permit = await run_in_threadpool(service.create, payload, image)
    except InvalidUploadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PermitConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except IdentifierAllocationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except BlobStoreError as exc:
        logger.error("permit_image_store_failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to store image") from exc

    request.state.permit_id = permit.permit_id
    return {"permit": serialize_permit(permit)}


@router.get("/status")
def check_permit_status(
    query: str | None = Query(default=None),
    service: PermitService = Depends(get_permit_service),
) -> dict[str, Any]:
    try:
        permit = service.find_by_query(query)
    except PermitValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PermitNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"permit": serialize_permit(permit)}


@router.get("/{permit_id}")
def get_permit(
    permit_id: str,
    service: PermitService = Depends(get_permit_service),
) -> dict[str, Any]:
    try:
        permit = service.get(permit_id)
    except PermitNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"permit": serialize_permit(permit)}


@router.patch("/{permit_id}")
async def update_permit(
    permit_id: str,
    request: Request,
    service: PermitService = Depends(get_permit_service),
) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")

    try:
        payload = PermitUpdate.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=validation_message(exc)) from exc

    try:
        permit = await run_in_threadpool(service.update, permit_id, payload)
    except PermitNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    request.state.permit_id = permit.permit_id
    return {"permit": serialize_permit(permit)}


@router.delete("/{permit_id}")
def delete_permit(
    permit_id: str,
    request: Request,
    service: PermitService = Depends(get_permit_service),
) -> dict[str, Any]:
    try:
        permit = service.delete(permit_id)
    except PermitNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    request.state.permit_id = permit.permit_id
    return {"message": "Permit deleted successfully", "permit": serialize_permit(permit)}
