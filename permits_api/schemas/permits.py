from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..models.permits import PermitStatusEnum

REQUIRED_FIELDS_MESSAGE = "fullName and passportNumber are required"

DATE_FIELDS = ("date_of_birth", "permit_start_date", "permit_expiry_date")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def parse_date(value: Any) -> date | None:
    """Accept plain ISO dates as well as ISO timestamps coming from browser date pickers."""
    value = _blank_to_none(value)
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        if "T" in value or " " in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    raise ValueError("unsupported date value")


class _PermitFields(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    nationality: Optional[str] = None
    date_of_birth: Optional[date] = None
    employer: Optional[str] = None
    job_title: Optional[str] = None
    permit_start_date: Optional[date] = None
    permit_expiry_date: Optional[date] = None

    @field_validator("nationality", "employer", "job_title", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator(*DATE_FIELDS, mode="before")
    @classmethod
    def _dates(cls, value: Any) -> Any:
        return parse_date(value)


class PermitCreate(_PermitFields):
    full_name: str = Field(min_length=1)
    passport_number: str = Field(min_length=1)

    @field_validator("full_name", "passport_number", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            return value.strip()
        return value


class PermitUpdate(_PermitFields):
    """Whitelisted partial update; keys outside these fields are dropped."""

    full_name: Optional[str] = Field(default=None, min_length=1)
    passport_number: Optional[str] = Field(default=None, min_length=1)
    status: Optional[PermitStatusEnum] = None

    @field_validator("full_name", "passport_number", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be cleared")
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("status cannot be cleared")
        if isinstance(value, str):
            normalized = value.strip().capitalize()
            return normalized
        return value

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def validation_message(exc: ValidationError) -> str:
    """Collapse a pydantic error list into the short message returned to clients."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = str(first["loc"][0]) if first.get("loc") else ""
    camel = to_camel(field) if "_" in field else field
    if camel in ("fullName", "passportNumber"):
        return REQUIRED_FIELDS_MESSAGE
    if camel == "status":
        allowed = ", ".join(member.value for member in PermitStatusEnum)
        return f"Invalid status. Allowed values: {allowed}"
    if camel in {to_camel(name) for name in DATE_FIELDS}:
        return f"Invalid date for {camel}"
    return f"Invalid value for {camel}" if camel else "Invalid request"
