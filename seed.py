from __future__ import annotations

import logging
import random
from datetime import date

from dotenv import load_dotenv
from sqlalchemy import select

load_dotenv()

from permits_api.config import settings
from permits_api.db.session import Database
from permits_api.models import Permit, PermitStatusEnum
from permits_api.schemas.permits import PermitCreate
from permits_api.services.identifiers import PermitIdAllocator
from permits_api.services.permits import PermitService
from permits_api.services.storage import build_blob_store

logger = logging.getLogger(__name__)

SEED_RANDOM_SEED = 20261019

SEED_PERMITS: list[dict] = [
    {
        "fullName": "Maria Santos",
        "passportNumber": "P5518201",
        "nationality": "Philippines",
        "dateOfBirth": "1991-04-12",
        "employer": "Harbour Logistics Ltd",
        "jobTitle": "Warehouse Supervisor",
        "permitStartDate": "2025-02-01",
        "permitExpiryDate": "2026-01-31",
        "status": PermitStatusEnum.APPROVED,
    },
    {
        "fullName": "Rajesh Kumar",
        "passportNumber": "Z4410932",
        "nationality": "India",
        "dateOfBirth": "1987-11-03",
        "employer": "Valletta Health Clinic",
        "jobTitle": "Staff Nurse",
        "permitStartDate": "2025-06-15",
        "permitExpiryDate": "2027-06-14",
        "status": PermitStatusEnum.PENDING,
    },
    {
        "fullName": "Ana Petrovic",
        "passportNumber": "SRB7712045",
        "nationality": "Serbia",
        "dateOfBirth": "1995-01-22",
        "employer": "Sliema Bay Hotel",
        "jobTitle": "Front Desk Agent",
        "permitStartDate": None,
        "permitExpiryDate": None,
        "status": PermitStatusEnum.REJECTED,
    },
    {
        "fullName": "Kwame Mensah",
        "passportNumber": "G0938817",
        "nationality": "Ghana",
        "dateOfBirth": "1990-08-30",
        "employer": "Gozo Construction Co.",
        "jobTitle": "Site Engineer",
        "permitStartDate": str(date.today()),
        "permitExpiryDate": None,
        "status": PermitStatusEnum.PENDING,
    },
]


def seed(database: Database) -> int:
    created = 0
    blob_store = build_blob_store(settings, database)
    rng = random.Random(SEED_RANDOM_SEED)
    with database.session() as db:
        service = PermitService(db, blob_store)
        service.allocator = PermitIdAllocator(
            service.permit_id_exists,
            jurisdiction=settings.permit_id_jurisdiction,
            max_attempts=settings.permit_id_max_attempts,
            rng=rng,
        )
        for entry in SEED_PERMITS:
            existing = db.scalar(select(Permit.id).where(Permit.passport_number == entry["passportNumber"]))
            if existing is not None:
                logger.info("seed_skip passport=%s", entry["passportNumber"])
                continue
            permit = service.create(PermitCreate.model_validate(entry))
            if entry["status"] != PermitStatusEnum.PENDING:
                service.set_status(permit.permit_id, entry["status"])
            created += 1
            logger.info("seed_created permit_id=%s", permit.permit_id)
    return created


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    database = Database(settings.database_url).connect()
    try:
        database.create_all()
        count = seed(database)
        logger.info("Seeded %s permits", count)
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
