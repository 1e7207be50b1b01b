"""
Blob storage for verification screenshots.

The engine only needs two capabilities: store bytes and get back a public
URL plus an opaque reference, and delete by reference.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobRef:
    url: str
    ref: str


class BlobStoreError(Exception):
    pass


class BlobStore:
    """Interface."""

    async def store(self, data: bytes, content_type: str = "image/jpeg") -> BlobRef:
        raise NotImplementedError

    async def delete(self, ref: str) -> None:
        raise NotImplementedError


_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class LocalBlobStore(BlobStore):
    """Writes blobs under a directory served at ``base_url``."""

    def __init__(self, root: str, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStoreError(f"Invalid blob reference: {ref}")
        return path

    async def store(self, data: bytes, content_type: str = "image/jpeg") -> BlobRef:
        if not data:
            raise BlobStoreError("Refusing to store an empty blob")
        ref = f"verification/{uuid.uuid4().hex}{_EXTENSIONS.get(content_type, '.bin')}"
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        return BlobRef(url=f"{self.base_url}/{ref}", ref=ref)

    async def delete(self, ref: str) -> None:
        path = self._path(ref)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.warning(f"[BLOB] Already gone: {ref}")
