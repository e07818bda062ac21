from .blobs import BlobChunk, StoredBlob
from .permits import Permit, PermitStatusEnum

__all__ = [
    "BlobChunk",
    "Permit",
    "PermitStatusEnum",
    "StoredBlob",
]
