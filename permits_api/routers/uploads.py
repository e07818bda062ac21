from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..db.session import DatabaseUnavailableError
from ..dependencies.services import get_blob_store
from ..services.storage import BlobNotFoundError, BlobStore, BlobStoreError

router = APIRouter(prefix="/uploads")

logger = logging.getLogger(__name__)


@router.get("/{key:path}")
def download_upload(key: str, blob_store: BlobStore = Depends(get_blob_store)):
    try:
        content = blob_store.fetch(key)
    except BlobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    except (BlobStoreError, DatabaseUnavailableError) as exc:
        logger.warning("blob_fetch_failed backend=%s key=%s", blob_store.backend, key, exc_info=True)
        raise HTTPException(status_code=500, detail="Unable to read file") from exc

    headers = {"Cache-Control": "public, max-age=31536000"}
    if content.length is not None:
        headers["Content-Length"] = str(content.length)

    background = BackgroundTasks()
    background.add_task(content.close)
    return StreamingResponse(
        iter(content.chunks),
        media_type=content.content_type or "application/octet-stream",
        headers=headers,
        background=background,
    )
