from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.permits import Permit, PermitStatusEnum
from ..schemas.permits import PermitCreate, PermitUpdate
from .identifiers import DEFAULT_JURISDICTION, DEFAULT_MAX_ATTEMPTS, PermitIdAllocator
from .metrics import record_blob_release_failure, record_permit_created, record_permit_deleted, record_status_change
from .storage import DEFAULT_MAX_IMAGE_BYTES, BlobStore, BlobStoreError, StoredFile, UploadedImage, validate_image

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

UPDATABLE_FIELDS = (
    "full_name",
    "passport_number",
    "nationality",
    "date_of_birth",
    "employer",
    "job_title",
    "permit_start_date",
    "permit_expiry_date",
    "status",
)

SEARCHABLE_COLUMNS = (Permit.full_name, Permit.passport_number, Permit.employer, Permit.job_title)


class PermitError(Exception):
    pass


class PermitValidationError(PermitError):
    pass


class PermitNotFoundError(PermitError):
    def __init__(self, message: str = "Permit not found") -> None:
        super().__init__(message)


class PermitConflictError(PermitError):
    def __init__(self, message: str = "Duplicate key error", details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.details = details or {}


@dataclass
class PermitPage:
    items: list[Permit]
    page: int
    limit: int
    total: int


def clamp_page(page: Optional[int], limit: Optional[int], *, default_limit: int = DEFAULT_PAGE_SIZE, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    page = max(1, page or 1)
    limit = default_limit if limit is None else limit
    return page, min(max(1, limit), max_limit)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PermitService:
    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        *,
        allocator: Optional[PermitIdAllocator] = None,
        jurisdiction: str = DEFAULT_JURISDICTION,
        max_id_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.db = db
        self.blob_store = blob_store
        self.allocator = allocator or PermitIdAllocator(
            self.permit_id_exists,
            jurisdiction=jurisdiction,
            max_attempts=max_id_attempts,
        )
        self.max_image_bytes = max_image_bytes
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # --- Lookups ---------------------------------------------------------
    def permit_id_exists(self, permit_id: str) -> bool:
        return self.db.scalar(select(Permit.id).where(Permit.permit_id == permit_id).limit(1)) is not None

    def get(self, permit_id: str) -> Permit:
        permit_id = (permit_id or "").strip()
        permit = self.db.scalar(select(Permit).where(Permit.permit_id == permit_id)) if permit_id else None
        if permit is None:
            raise PermitNotFoundError()
        return permit

    def find_by_query(self, query: Optional[str]) -> Permit:
        """Resolve a status-check query as a permit id first, then as a passport number."""
        term = (query or "").strip()
        if not term:
            raise PermitValidationError("query parameter is required")

        permit = self.db.scalar(select(Permit).where(Permit.permit_id == term))
        if permit is None:
            permit = self.db.scalar(
                select(Permit)
                .where(Permit.passport_number == term)
                .order_by(Permit.created_at.desc())
                .limit(1)
            )
        if permit is None:
            raise PermitNotFoundError()
        return permit

    def list(self, q: Optional[str] = None, page: Optional[int] = None, limit: Optional[int] = None) -> PermitPage:
        page, limit = clamp_page(page, limit, default_limit=self.default_page_size, max_limit=self.max_page_size)

        filters = []
        term = (q or "").strip()
        if term:
            pattern = _like_pattern(term)
            filters.append(or_(*(column.ilike(pattern, escape="\\") for column in SEARCHABLE_COLUMNS)))

        total = self.db.scalar(select(func.count()).select_from(Permit).where(*filters)) or 0
        items = list(
            self.db.scalars(
                select(Permit)
                .where(*filters)
                .order_by(Permit.created_at.desc(), Permit.permit_id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        )
        return PermitPage(items=items, page=page, limit=limit, total=total)

    # --- Mutations -------------------------------------------------------
    def create(self, payload: PermitCreate, image: Optional[UploadedImage] = None) -> Permit:
        if image is not None:
            validate_image(image, self.max_image_bytes)

        permit_id = self.allocator.allocate()

        stored: Optional[StoredFile] = None
        if image is not None:
            stored = self.blob_store.store(image.data, image.filename, image.content_type)

        permit = Permit(
            permit_id=permit_id,
            full_name=payload.full_name,
            passport_number=payload.passport_number,
            nationality=payload.nationality,
            date_of_birth=payload.date_of_birth,
            employer=payload.employer,
            job_title=payload.job_title,
            permit_start_date=payload.permit_start_date,
            permit_expiry_date=payload.permit_expiry_date,
            status=PermitStatusEnum.PENDING,
            image=stored.url if stored else None,
            image_key=stored.key if stored else None,
        )
        self.db.add(permit)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            self._release_blob(stored.key if stored else None)
            logger.warning("permit_conflict permit_id=%s", permit_id)
            raise PermitConflictError(details={"permitId": permit_id}) from exc
        except SQLAlchemyError:
            self.db.rollback()
            self._release_blob(stored.key if stored else None)
            raise

        record_permit_created(with_image=stored is not None)
        logger.info("permit_created permit_id=%s with_image=%s", permit.permit_id, stored is not None)
        return permit

    def update(self, permit_id: str, payload: PermitUpdate) -> Permit:
        permit = self.get(permit_id)
        changes = payload.changes()

        previous_status = permit.status
        for field_name in UPDATABLE_FIELDS:
            if field_name in changes:
                setattr(permit, field_name, changes[field_name])

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("permit_update_failed permit_id=%s", permit.permit_id)
            raise

        if "status" in changes and changes["status"] != previous_status:
            record_status_change(permit.status.value)
        logger.info("permit_updated permit_id=%s fields=%s", permit.permit_id, ",".join(sorted(changes)))
        return permit

    def set_status(self, permit_id: str, status: PermitStatusEnum) -> Permit:
        return self.update(permit_id, PermitUpdate(status=status))

    def delete(self, permit_id: str) -> Permit:
        permit = self.get(permit_id)
        image_key = permit.image_key

        self.db.delete(permit)
        self.db.commit()
        record_permit_deleted()
        logger.info("permit_deleted permit_id=%s", permit.permit_id)

        self._release_blob(image_key)
        return permit

    def _release_blob(self, key: Optional[str]) -> None:
        if not key:
            return
        try:
            self.blob_store.delete(key)
        except BlobStoreError:
            record_blob_release_failure(self.blob_store.backend)
            logger.warning("blob_release_failed backend=%s key=%s", self.blob_store.backend, key, exc_info=True)
