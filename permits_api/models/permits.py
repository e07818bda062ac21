from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Date, DateTime, Enum as SAEnum, String, Uuid

from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PermitStatusEnum(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Permit(Base):
    __tablename__ = "permits"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    permit_id = Column(String(32), nullable=False, unique=True, index=True)
    full_name = Column(String, nullable=False)
    passport_number = Column(String, nullable=False, index=True)
    nationality = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    employer = Column(String, nullable=True)
    job_title = Column(String, nullable=True)
    permit_start_date = Column(Date, nullable=True)
    permit_expiry_date = Column(Date, nullable=True)
    application_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    status = Column(
        SAEnum(
            PermitStatusEnum,
            name="permit_status",
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=False,
        default=PermitStatusEnum.PENDING,
    )
    # public path served to clients, e.g. /uploads/1700000000000-photo.jpg
    image = Column(String, nullable=True)
    image_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
