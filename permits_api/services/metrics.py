from __future__ import annotations

from prometheus_client import Counter


PERMITS_CREATED_COUNTER = Counter(
    "permits_created_total",
    "Total permits created",
    ["with_image"],
)

PERMITS_DELETED_COUNTER = Counter(
    "permits_deleted_total",
    "Total permits deleted",
)

PERMITS_STATUS_CHANGED_COUNTER = Counter(
    "permits_status_changed_total",
    "Permit status transitions applied through updates",
    ["status"],
)

PERMIT_ID_COLLISIONS_COUNTER = Counter(
    "permit_id_collisions_total",
    "Randomly drawn permit ids that were already taken",
)

BLOB_RELEASE_FAILURES_COUNTER = Counter(
    "blob_release_failures_total",
    "Blob deletions that failed after the owning permit was removed",
    ["backend"],
)


def record_permit_created(with_image: bool) -> None:
    PERMITS_CREATED_COUNTER.labels(with_image="true" if with_image else "false").inc()


def record_permit_deleted() -> None:
    PERMITS_DELETED_COUNTER.inc()


def record_status_change(status: str) -> None:
    PERMITS_STATUS_CHANGED_COUNTER.labels(status=status).inc()


def record_blob_release_failure(backend: str) -> None:
    BLOB_RELEASE_FAILURES_COUNTER.labels(backend=backend).inc()
