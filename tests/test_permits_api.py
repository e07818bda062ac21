from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest
from fastapi import Depends, Request
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from permits_api.dependencies.db import get_db
from permits_api.dependencies.services import get_blob_store, get_permit_service
from permits_api.models import Permit
from permits_api.services.identifiers import PermitIdAllocator
from permits_api.services.permits import PermitService

pytestmark = pytest.mark.integration


class FixedRandom:
    def __init__(self, value: int) -> None:
        self.value = value

    def randint(self, low: int, high: int) -> int:
        return self.value


def _create(client: TestClient, **fields) -> dict:
    response = client.post("/permits", json=fields)
    assert response.status_code == 201, response.text
    return response.json()["permit"]


def test_create_minimal_permit(client, jane_doe):
    response = client.post("/permits", json=jane_doe)

    assert response.status_code == 201
    permit = response.json()["permit"]
    year = datetime.now(timezone.utc).year
    assert re.fullmatch(rf"WP-MTA-{year}-\d{{6}}", permit["permitId"])
    assert permit["status"] == "Pending"
    assert permit["image"] is None
    assert permit["fullName"] == "Jane Doe"
    assert permit["passportNumber"] == "P1234567"
    assert permit["nationality"] is None
    assert permit["createdAt"] and permit["updatedAt"]


def test_create_with_all_fields_parses_dates(client):
    permit = _create(
        client,
        fullName="Luca Borg",
        passportNumber="MT998877",
        nationality="Italy",
        dateOfBirth="1990-05-17",
        employer="Harbour Logistics",
        jobTitle="Driver",
        permitStartDate="2025-01-01T00:00:00.000Z",
        permitExpiryDate="2026-01-01",
    )

    assert permit["dateOfBirth"] == "1990-05-17"
    assert permit["permitStartDate"] == "2025-01-01"
    assert permit["permitExpiryDate"] == "2026-01-01"
    assert permit["employer"] == "Harbour Logistics"


def test_create_ignores_client_supplied_status_and_id(client, jane_doe):
    permit = _create(client, **jane_doe, status="Approved", permitId="WP-MTA-2000-000001")
    assert permit["status"] == "Pending"
    assert permit["permitId"] != "WP-MTA-2000-000001"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"fullName": "Jane Doe"},
        {"passportNumber": "P1234567"},
        {"fullName": "   ", "passportNumber": "P1234567"},
        {"fullName": "Jane Doe", "passportNumber": ""},
    ],
)
def test_create_requires_name_and_passport(client, database, payload):
    response = client.post("/permits", json=payload)

    assert response.status_code == 400
    assert response.json() == {"message": "fullName and passportNumber are required"}
    with database.session() as session:
        assert session.scalar(select(func.count()).select_from(Permit)) == 0


def test_create_rejects_invalid_date(client, jane_doe):
    response = client.post("/permits", json={**jane_doe, "dateOfBirth": "not-a-date"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid date for dateOfBirth"


def test_create_rejects_malformed_json(client):
    response = client.post("/permits", content=b"{broken", headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid JSON body"


def test_create_enforces_json_body_limit(client_factory, jane_doe):
    client = client_factory(json_body_limit_bytes=64)
    response = client.post("/permits", json={**jane_doe, "employer": "x" * 200})
    assert response.status_code == 413


def test_same_passport_can_be_used_twice(client, jane_doe):
    first = _create(client, **jane_doe)
    second = _create(client, **jane_doe)

    assert first["permitId"] != second["permitId"]
    assert first["passportNumber"] == second["passportNumber"]


def test_duplicate_identifier_is_a_conflict(app, database, jane_doe):
    def fixed_id_service(request: Request, db: Session = Depends(get_db)) -> PermitService:
        allocator = PermitIdAllocator(lambda _: False, rng=FixedRandom(424242))
        return PermitService(db, get_blob_store(request), allocator=allocator)

    app.dependency_overrides[get_permit_service] = fixed_id_service
    with TestClient(app) as client:
        first = client.post("/permits", json=jane_doe)
        second = client.post("/permits", json={"fullName": "John Roe", "passportNumber": "X1"})

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["message"] == "Duplicate key error"
    with database.session() as session:
        permit_ids = session.scalars(select(Permit.permit_id)).all()
    assert len(permit_ids) == 1


def test_identifier_exhaustion_is_a_server_error(app, database, jane_doe):
    def colliding_service(request: Request, db: Session = Depends(get_db)) -> PermitService:
        allocator = PermitIdAllocator(lambda _: True, max_attempts=3)
        return PermitService(db, get_blob_store(request), allocator=allocator)

    app.dependency_overrides[get_permit_service] = colliding_service
    with TestClient(app) as client:
        response = client.post("/permits", json=jane_doe)

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to generate unique Work Permit ID"


def test_create_then_get_round_trip(client, jane_doe):
    created = _create(client, **jane_doe, dateOfBirth="1985-02-03", employer="Acme")

    response = client.get(f"/permits/{created['permitId']}")

    assert response.status_code == 200
    assert response.json()["permit"] == created


def test_get_unknown_permit(client):
    response = client.get("/permits/WP-MTA-2025-000000")
    assert response.status_code == 404
    assert response.json() == {"message": "Permit not found"}


def test_status_search_by_id_and_passport(client, jane_doe):
    created = _create(client, **jane_doe)

    by_id = client.get("/permits/status", params={"query": created["permitId"]})
    by_passport = client.get("/permits/status", params={"query": "  P1234567  "})

    assert by_id.status_code == 200
    assert by_id.json()["permit"]["permitId"] == created["permitId"]
    assert by_passport.status_code == 200
    assert by_passport.json()["permit"]["permitId"] == created["permitId"]


def test_status_search_prefers_latest_application_for_passport(client, jane_doe):
    _create(client, **jane_doe)
    latest = _create(client, **jane_doe)

    response = client.get("/permits/status", params={"query": jane_doe["passportNumber"]})
    assert response.json()["permit"]["permitId"] == latest["permitId"]


@pytest.mark.parametrize("params", [{}, {"query": ""}, {"query": "   "}])
def test_status_search_requires_query(client, params):
    response = client.get("/permits/status", params=params)
    assert response.status_code == 400
    assert response.json() == {"message": "query parameter is required"}


def test_status_search_not_found(client):
    response = client.get("/permits/status", params={"query": "UNKNOWN"})
    assert response.status_code == 404
    assert response.json() == {"message": "Permit not found"}


def test_list_is_newest_first_with_totals(client):
    names = ["Alice Abela", "Bob Borg", "Carla Camilleri"]
    for idx, name in enumerate(names):
        _create(client, fullName=name, passportNumber=f"P00{idx}")

    response = client.get("/permits")

    assert response.status_code == 200
    body = response.json()
    assert [permit["fullName"] for permit in body["data"]] == list(reversed(names))
    assert body["page"] == 1
    assert body["limit"] == 20
    assert body["total"] == 3


def test_list_pagination_and_clamping(client):
    for idx in range(5):
        _create(client, fullName=f"Worker {idx}", passportNumber=f"P10{idx}")

    second_page = client.get("/permits", params={"page": 2, "limit": 2}).json()
    assert second_page["page"] == 2
    assert second_page["limit"] == 2
    assert len(second_page["data"]) == 2
    assert second_page["total"] == 5

    clamped = client.get("/permits", params={"page": 0, "limit": 1000}).json()
    assert clamped["page"] == 1
    assert clamped["limit"] == 100
    assert len(clamped["data"]) == 5

    negative = client.get("/permits", params={"page": -3, "limit": -1}).json()
    assert negative["page"] == 1
    assert negative["limit"] == 1
    assert negative["total"] == 5

    garbage = client.get("/permits", params={"page": "abc", "limit": "xyz"}).json()
    assert garbage["page"] == 1
    assert garbage["limit"] == 20

    beyond = client.get("/permits", params={"page": 10, "limit": 2}).json()
    assert beyond["data"] == []
    assert beyond["total"] == 5


def test_list_search_is_case_insensitive_substring(client):
    _create(client, fullName="Maria Santos", passportNumber="PH111", employer="Harbour Logistics")
    _create(client, fullName="Rajesh Kumar", passportNumber="IN222", jobTitle="Staff Nurse")
    _create(client, fullName="Ana Petrovic", passportNumber="RS333", employer="Sliema Bay Hotel")

    by_employer = client.get("/permits", params={"q": "harBOUR"}).json()
    assert [p["fullName"] for p in by_employer["data"]] == ["Maria Santos"]
    assert by_employer["total"] == 1

    by_job = client.get("/permits", params={"q": "nurse"}).json()
    assert [p["fullName"] for p in by_job["data"]] == ["Rajesh Kumar"]

    by_passport = client.get("/permits", params={"q": "rs3"}).json()
    assert [p["fullName"] for p in by_passport["data"]] == ["Ana Petrovic"]

    by_name = client.get("/permits", params={"q": "A"}).json()
    assert by_name["total"] == 3


def test_list_search_with_no_matches(client, jane_doe):
    _create(client, **jane_doe)

    body = client.get("/permits", params={"q": "nobody"}).json()

    assert body["data"] == []
    assert body["total"] == 0


def test_list_search_treats_wildcards_literally(client, jane_doe):
    _create(client, **jane_doe)

    body = client.get("/permits", params={"q": "%"}).json()
    assert body["total"] == 0


def test_update_applies_whitelisted_fields_only(client, jane_doe):
    created = _create(client, **jane_doe)

    response = client.patch(
        f"/permits/{created['permitId']}",
        json={
            "permitId": "WP-MTA-1999-111111",
            "status": "Approved",
            "employer": "New Employer",
            "permitExpiryDate": "2030-12-31",
            "image": "/uploads/evil.png",
            "createdAt": "2000-01-01T00:00:00Z",
        },
    )

    assert response.status_code == 200
    permit = response.json()["permit"]
    assert permit["permitId"] == created["permitId"]
    assert permit["status"] == "Approved"
    assert permit["employer"] == "New Employer"
    assert permit["permitExpiryDate"] == "2030-12-31"
    assert permit["image"] is None
    assert permit["createdAt"] == created["createdAt"]
    assert permit["fullName"] == "Jane Doe"

    assert client.get("/permits/WP-MTA-1999-111111").status_code == 404
    assert client.get(f"/permits/{created['permitId']}").json()["permit"]["status"] == "Approved"


def test_update_can_clear_optional_fields(client, jane_doe):
    created = _create(client, **jane_doe, employer="Acme")

    permit = client.patch(f"/permits/{created['permitId']}", json={"employer": None}).json()["permit"]
    assert permit["employer"] is None


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"status": "Archived"}, "Invalid status. Allowed values: Pending, Approved, Rejected"),
        ({"permitStartDate": "31/12/2025"}, "Invalid date for permitStartDate"),
        ({"fullName": ""}, "fullName and passportNumber are required"),
        ({"passportNumber": None}, "fullName and passportNumber are required"),
        ({"status": None}, "Invalid status. Allowed values: Pending, Approved, Rejected"),
    ],
)
def test_update_validates_fields(client, jane_doe, payload, message):
    created = _create(client, **jane_doe)

    response = client.patch(f"/permits/{created['permitId']}", json=payload)

    assert response.status_code == 400
    assert response.json()["message"] == message


def test_update_unknown_permit(client):
    response = client.patch("/permits/WP-MTA-2025-000000", json={"status": "Approved"})
    assert response.status_code == 404


def test_delete_twice(client, jane_doe):
    created = _create(client, **jane_doe)

    first = client.delete(f"/permits/{created['permitId']}")
    second = client.delete(f"/permits/{created['permitId']}")

    assert first.status_code == 200
    assert first.json()["message"] == "Permit deleted successfully"
    assert first.json()["permit"]["permitId"] == created["permitId"]
    assert second.status_code == 404
    assert client.get(f"/permits/{created['permitId']}").status_code == 404


def test_delete_unknown_permit(client):
    response = client.delete("/permits/WP-MTA-2025-000000")
    assert response.status_code == 404
    assert response.json() == {"message": "Permit not found"}


def test_routes_are_mounted_under_api_prefix(client, jane_doe):
    created = client.post("/api/permits", json=jane_doe).json()["permit"]

    response = client.get(f"/api/permits/{created['permitId']}")
    assert response.status_code == 200
    assert client.get("/api/permits").json()["total"] == 1


def test_unexpected_errors_return_generic_message(app, jane_doe):
    class ExplodingService:
        def list(self, **kwargs):
            raise RuntimeError("connection string with password leaked")

    app.dependency_overrides[get_permit_service] = lambda: ExplodingService()
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/permits")

    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error"}
