from __future__ import annotations

import io
import logging
import mimetypes
import re
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..db.session import Database
from ..models.blobs import BlobChunk, StoredBlob
from .aws import boto3_client

logger = logging.getLogger(__name__)

PUBLIC_UPLOADS_PREFIX = "/uploads"
DEFAULT_CHUNK_SIZE = 255 * 1024
DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024

_WHITESPACE = re.compile(r"\s+")
_HEX_KEY = re.compile(r"^[0-9a-f]{32}$")


class BlobStoreError(RuntimeError):
    pass


class BlobNotFoundError(BlobStoreError):
    pass


class InvalidUploadError(ValueError):
    pass


@dataclass
class StoredFile:
    key: str
    url: str
    content_type: str
    size: int


@dataclass
class BlobContent:
    content_type: str
    length: Optional[int]
    chunks: Iterable[bytes]
    close: Callable[[], None] = field(default=lambda: None)

    def read(self) -> bytes:
        try:
            return b"".join(self.chunks)
        finally:
            self.close()


@dataclass
class UploadedImage:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class BlobStore(Protocol):
    backend: str

    def store(self, data: bytes, filename: str, content_type: str) -> StoredFile: ...

    def fetch(self, key: str) -> BlobContent: ...

    def delete(self, key: str) -> None: ...


def read_upload(file_obj: BinaryIO, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> bytes:
    """Read an upload, refusing to buffer more than ``max_bytes``."""
    buffer = io.BytesIO()
    total_bytes = 0
    while True:
        chunk = file_obj.read(1024 * 1024)
        if not chunk:
            break
        total_bytes += len(chunk)
        if total_bytes > max_bytes:
            raise InvalidUploadError(f"Image exceeds {max_bytes // (1024 * 1024)} MB limit")
        buffer.write(chunk)
    return buffer.getvalue()


def validate_image(image: UploadedImage, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> None:
    content_type = (image.content_type or "").split(";", 1)[0].strip().lower()
    if not content_type.startswith("image/"):
        raise InvalidUploadError("Only image uploads are allowed")
    if image.size > max_bytes:
        raise InvalidUploadError(f"Image exceeds {max_bytes // (1024 * 1024)} MB limit")
    if image.size == 0:
        raise InvalidUploadError("Uploaded image is empty")


def sanitize_filename(filename: str) -> str:
    name = Path(filename.replace("\\", "/")).name
    name = _WHITESPACE.sub("_", name.strip())
    return name or "upload"


class FilesystemBlobStore:
    backend = "filesystem"

    def __init__(self, directory: Path | str, public_prefix: str = PUBLIC_UPLOADS_PREFIX) -> None:
        self.directory = Path(directory)
        self.public_prefix = public_prefix.rstrip("/")

    def _path_for(self, key: str) -> Path:
        if not key or Path(key).name != key or key in {".", ".."}:
            raise BlobNotFoundError("File not found")
        return self.directory / key

    def store(self, data: bytes, filename: str, content_type: str) -> StoredFile:
        safe_name = f"{int(time.time() * 1000)}-{sanitize_filename(filename)}"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / safe_name
            try:
                handle = path.open("xb")
            except FileExistsError:
                safe_name = f"{uuid.uuid4().hex[:8]}-{safe_name}"
                path = self.directory / safe_name
                handle = path.open("xb")
            with handle:
                handle.write(data)
        except OSError as exc:
            raise BlobStoreError(f"Failed to write upload: {exc.__class__.__name__}") from exc

        return StoredFile(
            key=safe_name,
            url=f"{self.public_prefix}/{safe_name}",
            content_type=content_type,
            size=len(data),
        )

    def fetch(self, key: str) -> BlobContent:
        path = self._path_for(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError("File not found") from exc
        except OSError as exc:
            raise BlobStoreError(f"Failed to read upload: {exc.__class__.__name__}") from exc
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return BlobContent(content_type=content_type, length=len(data), chunks=[data])

    def delete(self, key: str) -> None:
        try:
            path = self._path_for(key)
        except BlobNotFoundError:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete upload: {exc.__class__.__name__}") from exc


class DatabaseBlobStore:
    """Chunked blob storage in the ``blob_files``/``blob_chunks`` tables."""

    backend = "database"

    def __init__(
        self,
        database: Database,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        public_prefix: str = PUBLIC_UPLOADS_PREFIX,
    ) -> None:
        self.database = database
        self.chunk_size = chunk_size
        self.public_prefix = public_prefix.rstrip("/")

    def store(self, data: bytes, filename: str, content_type: str) -> StoredFile:
        key = uuid.uuid4().hex
        try:
            with self.database.session() as session:
                session.add(
                    StoredBlob(
                        id=key,
                        filename=sanitize_filename(filename),
                        content_type=content_type or "application/octet-stream",
                        length=len(data),
                        chunk_size=self.chunk_size,
                    )
                )
                session.flush()
                for n, offset in enumerate(range(0, len(data), self.chunk_size)):
                    session.add(BlobChunk(file_id=key, n=n, data=data[offset : offset + self.chunk_size]))
        except SQLAlchemyError as exc:
            raise BlobStoreError(f"Failed to store blob: {exc.__class__.__name__}") from exc

        return StoredFile(key=key, url=f"{self.public_prefix}/{key}", content_type=content_type, size=len(data))

    def fetch(self, key: str) -> BlobContent:
        if not _HEX_KEY.match(key or ""):
            raise BlobNotFoundError("File not found")
        try:
            with self.database.session() as session:
                header = session.get(StoredBlob, key)
                if header is None:
                    raise BlobNotFoundError("File not found")
                content_type = header.content_type or "application/octet-stream"
                length = header.length
                chunk_count = session.scalar(
                    select(BlobChunk.n).where(BlobChunk.file_id == key).order_by(BlobChunk.n.desc()).limit(1)
                )
        except SQLAlchemyError as exc:
            raise BlobStoreError(f"Failed to read blob: {exc.__class__.__name__}") from exc

        total_chunks = 0 if chunk_count is None else chunk_count + 1
        return BlobContent(content_type=content_type, length=length, chunks=self._iter_chunks(key, total_chunks))

    def _iter_chunks(self, key: str, total_chunks: int) -> Iterator[bytes]:
        with self.database.session() as session:
            for n in range(total_chunks):
                chunk = session.scalar(select(BlobChunk.data).where(BlobChunk.file_id == key, BlobChunk.n == n))
                if chunk is None:
                    raise BlobStoreError(f"Blob {key} is missing chunk {n}")
                yield chunk

    def delete(self, key: str) -> None:
        if not _HEX_KEY.match(key or ""):
            return
        try:
            with self.database.session() as session:
                session.execute(delete(BlobChunk).where(BlobChunk.file_id == key))
                session.execute(delete(StoredBlob).where(StoredBlob.id == key))
        except SQLAlchemyError as exc:
            raise BlobStoreError(f"Failed to delete blob: {exc.__class__.__name__}") from exc


class S3BlobStore:
    backend = "s3"

    def __init__(self, bucket: str, client=None, public_prefix: str = PUBLIC_UPLOADS_PREFIX) -> None:
        self.bucket = bucket
        self._client = client if client is not None else boto3_client("s3")
        self.public_prefix = public_prefix.rstrip("/")

    def _build_key(self, original_name: str) -> str:
        suffix = Path(original_name).suffix.lower() or ".bin"
        return f"permits/{uuid.uuid4().hex}{suffix}"

    def store(self, data: bytes, filename: str, content_type: str) -> StoredFile:
        key = self._build_key(filename)
        try:
            self._client.upload_fileobj(io.BytesIO(data), self.bucket, key, ExtraArgs={"ContentType": content_type})
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to upload to S3: {exc}") from exc
        return StoredFile(key=key, url=f"{self.public_prefix}/{key}", content_type=content_type, size=len(data))

    def fetch(self, key: str) -> BlobContent:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in {"NoSuchKey", "404", "NotFound"}:
                raise BlobNotFoundError("File not found") from exc
            raise BlobStoreError(f"Failed to download S3 object: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"Failed to download S3 object: {exc}") from exc

        body = obj["Body"]

        def iterator(chunk_size: int = 1024 * 64) -> Iterator[bytes]:
            for chunk in body.iter_chunks(chunk_size):
                if chunk:
                    yield chunk

        return BlobContent(
            content_type=obj.get("ContentType", "application/octet-stream"),
            length=obj.get("ContentLength"),
            chunks=iterator(),
            close=body.close,
        )

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to delete S3 object: {exc}") from exc


def build_blob_store(settings: Settings, database: Optional[Database] = None) -> BlobStore:
    if settings.blob_storage == "filesystem":
        return FilesystemBlobStore(settings.upload_dir)
    if settings.blob_storage == "database":
        if database is None:
            raise BlobStoreError("Database blob storage requires a connected database")
        return DatabaseBlobStore(database)
    if settings.blob_storage == "s3":
        return S3BlobStore(settings.aws.s3_bucket, client=boto3_client("s3", settings.aws))
    raise BlobStoreError(f"Unsupported blob storage backend: {settings.blob_storage}")
