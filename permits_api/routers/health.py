from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..db.session import Database, DatabaseUnavailableError
from ..dependencies.db import get_database

router = APIRouter()


@router.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(database: Database = Depends(get_database)):
    try:
        with database.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (DatabaseUnavailableError, SQLAlchemyError):
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "down"})
    return {"status": "ok", "database": "ok"}
