from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from .client import PermitsClient, PermitsClientError, format_permit
from .config import settings
from .db.session import Database
from .models.permits import PermitStatusEnum
from .services.permits import PermitNotFoundError, PermitService
from .services.storage import build_blob_store

app = typer.Typer(help="Work permit portal CLI")


def get_client() -> PermitsClient:
    return PermitsClient(base_url=settings.api_url)


def _fail(exc: PermitsClientError) -> None:
    typer.secho(str(exc) or "Something went wrong", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def init_db() -> None:
    """Create the permit and blob tables if they do not exist."""
    database = Database(settings.database_url).connect()
    try:
        database.create_all()
        typer.echo("Database schema is up to date")
    finally:
        database.dispose()


@app.command()
def set_status(
    permit_id: str = typer.Argument(..., help="Work permit id, e.g. WP-MTA-2025-123456"),
    status: PermitStatusEnum = typer.Argument(..., help="New status"),
) -> None:
    """Approve or reject a permit directly against the database."""
    database = Database(settings.database_url).connect()
    db = database.new_session()
    try:
        service = PermitService(db, build_blob_store(settings, database))
        try:
            permit = service.set_status(permit_id, status)
        except PermitNotFoundError:
            typer.secho(f"Permit {permit_id} not found", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        typer.echo(f"{permit.permit_id} is now {permit.status.value}")
    finally:
        db.close()
        database.dispose()


@app.command()
def create(
    full_name: str = typer.Option(..., "--full-name", "-n", help="Applicant full name"),
    passport_number: str = typer.Option(..., "--passport", "-p", help="Passport number"),
    nationality: Optional[str] = typer.Option(None, "--nationality"),
    date_of_birth: Optional[str] = typer.Option(None, "--date-of-birth", help="YYYY-MM-DD"),
    employer: Optional[str] = typer.Option(None, "--employer"),
    job_title: Optional[str] = typer.Option(None, "--job-title"),
    permit_start_date: Optional[str] = typer.Option(None, "--start-date", help="YYYY-MM-DD"),
    permit_expiry_date: Optional[str] = typer.Option(None, "--expiry-date", help="YYYY-MM-DD"),
    image: Optional[Path] = typer.Option(None, "--image", exists=True, dir_okay=False, help="Applicant photo"),
) -> None:
    """Submit a new permit application."""
    fields = {
        "fullName": full_name,
        "passportNumber": passport_number,
        "nationality": nationality,
        "dateOfBirth": date_of_birth,
        "employer": employer,
        "jobTitle": job_title,
        "permitStartDate": permit_start_date,
        "permitExpiryDate": permit_expiry_date,
    }
    with get_client() as client:
        try:
            permit = client.create_permit(fields, image=image)
        except PermitsClientError as exc:
            _fail(exc)
    typer.echo(f"Permit created: {permit['permitId']} (status {permit['status']})")


@app.command()
def status(query: str = typer.Argument(..., help="Work permit id or passport number")) -> None:
    """Check the status of a permit."""
    with get_client() as client:
        try:
            permit = client.check_status(query)
        except PermitsClientError as exc:
            _fail(exc)
    typer.echo(f"{permit['permitId']}: {permit['status']} ({permit['fullName']})")


@app.command("list")
def list_permits(
    q: str = typer.Option("", "--q", "-q", help="Search name, passport, employer or job title"),
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    """List permits, newest first."""
    with get_client() as client:
        try:
            result = client.list_permits(q=q, page=page, limit=limit)
        except PermitsClientError as exc:
            _fail(exc)

    for permit in result["data"]:
        typer.echo(f"{permit['permitId']}  {permit['status']:<8}  {permit['fullName']}  {permit['passportNumber']}")
    pages = max(1, -(-result["total"] // result["limit"]))
    typer.echo(f"Page {result['page']} of {pages} ({result['total']} total)")


@app.command()
def show(permit_id: str = typer.Argument(...)) -> None:
    """Print the permit detail sheet."""
    with get_client() as client:
        try:
            permit = client.get_permit(permit_id)
        except PermitsClientError as exc:
            _fail(exc)
    typer.echo(format_permit(permit))


@app.command()
def delete(
    permit_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a permit and its photo."""
    if not yes:
        typer.confirm(f"Delete permit {permit_id}?", abort=True)
    with get_client() as client:
        try:
            result = client.delete_permit(permit_id)
        except PermitsClientError as exc:
            _fail(exc)
    typer.echo(result.get("message", "Permit deleted"))


if __name__ == "__main__":
    app()
