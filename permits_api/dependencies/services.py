from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..config import Settings
from ..services.permits import PermitService
from ..services.storage import BlobStore
from .db import get_db


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_permit_service(
    request: Request,
    db: Session = Depends(get_db),
) -> PermitService:
    settings: Settings = request.app.state.settings
    return PermitService(
        db,
        get_blob_store(request),
        jurisdiction=settings.permit_id_jurisdiction,
        max_id_attempts=settings.permit_id_max_attempts,
        max_image_bytes=settings.max_image_bytes,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )
