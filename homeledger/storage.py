# homeledger/storage.py
"""
Blob storage for uploaded documents.

Two backends share one async interface: the local filesystem (development,
single host) and MinIO / any S3-compatible store. Paths are opaque strings of
the form "<propertyId>/<userId>/<randomId>/<fileName>"; access to a path is
authorised purely by checking that it starts with "<propertyId>/".
"""
import asyncio
import hashlib
import hmac
import io
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode
from uuid import uuid4

import aiofiles
from minio import Minio
from minio.error import S3Error

from homeledger.config import settings
from homeledger.errors import NotFound, StorageError

logger = logging.getLogger(__name__)

MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".pdf": "application/pdf",
}

_USABLE_NAME_RE = re.compile(r"\w")


def sanitize_filename(filename: Optional[str]) -> str:
    # strip any client-supplied directory parts
    name = Path((filename or "").replace("\\", "/")).name.strip()
    # "..", "." and names made only of punctuation would not be a usable path segment
    if name in (".", "..") or not _USABLE_NAME_RE.search(name):
        return "uploaded"
    return name


def resolve_content_type(declared: Optional[str], filename: str) -> str:
    """
    Trust the client's MIME type unless it is missing or the generic
    application/octet-stream, in which case infer it from the extension.
    """
    declared = (declared or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    ext = Path(filename).suffix.lower()
    return MIME_BY_EXTENSION.get(ext, declared or "application/octet-stream")


def build_storage_path(property_id, user_id, filename: str) -> str:
    return f"{property_id}/{user_id}/{uuid4()}/{filename}"


def path_belongs_to(storage_path: str, property_id) -> bool:
    return storage_path.startswith(f"{property_id}/")


def ensure_path_belongs_to(storage_path: str, property_id) -> None:
    if not path_belongs_to(storage_path, property_id):
        logger.warning("Rejected storage access outside property %s: %s", property_id, storage_path)
        raise NotFound("File not found")


class BlobStore(ABC):
    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def get(self, path: str) -> bytes: ...

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def signed_url(self, path: str, ttl_seconds: int) -> str: ...


def _sign(path: str, expires: int, secret: str) -> str:
    msg = f"{path}:{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_signature(path: str, expires: int, signature: str, secret: Optional[str] = None) -> bool:
    if expires < int(time.time()):
        return False
    expected = _sign(path, expires, secret or settings.secret_key)
    return hmac.compare_digest(expected, signature)


class LocalBlobStore(BlobStore):
    """Files under upload_dir; signed URLs point at the app's /blobs route."""

    def __init__(self, base_dir: Optional[str] = None, base_url: Optional[str] = None, secret: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.upload_dir).resolve()
        self.base_url = (base_url or settings.public_base_url).rstrip("/")
        self.secret = secret or settings.secret_key

    def resolve_path(self, path: str) -> Path:
        parts = path.split("/")
        if any(part in ("", ".", "..") for part in parts):
            raise StorageError(f"Invalid storage path: {path}")
        full = (self.base_dir / path).resolve()
        # the object must live exactly where its key says, never at a parent directory
        if full != self.base_dir.joinpath(*parts) or self.base_dir not in full.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return full

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        full = self.resolve_path(path)
        try:
            await asyncio.to_thread(os.makedirs, full.parent, exist_ok=True)
            # "x": never overwrite an existing object
            async with aiofiles.open(full, "xb") as out_file:
                await out_file.write(data)
        except FileExistsError:
            raise StorageError(f"Object already exists: {path}")
        except OSError as e:
            logger.exception("Failed to write %s", path)
            raise StorageError(f"Failed to upload file: {e}")

    async def get(self, path: str) -> bytes:
        full = self.resolve_path(path)
        try:
            async with aiofiles.open(full, "rb") as in_file:
                return await in_file.read()
        except OSError as e:
            raise StorageError(f"Failed to download file: {e}")

    async def delete(self, path: str) -> None:
        full = self.resolve_path(path)
        try:
            await asyncio.to_thread(full.unlink)
        except FileNotFoundError:
            logger.info("Blob %s already gone", path)
        except OSError as e:
            raise StorageError(f"Failed to delete file: {e}")

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": _sign(path, expires, self.secret)})
        return f"{self.base_url}/blobs/{quote(path)}?{query}"


class MinioBlobStore(BlobStore):
    """S3-compatible store; minio-py is blocking so every call runs in a thread."""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        self.bucket = bucket or settings.minio_bucket
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info("Created bucket %s", self.bucket)
        self._bucket_checked = True

    def _put(self, path: str, data: bytes, content_type: str) -> None:
        self._ensure_bucket()
        self.client.put_object(self.bucket, path, io.BytesIO(data), length=len(data), content_type=content_type)

    def _get(self, path: str) -> bytes:
        resp = self.client.get_object(self.bucket, path)
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(self._put, path, data, content_type)
        except S3Error as e:
            logger.error("MinIO upload failed for %s: %s", path, e)
            raise StorageError(f"Failed to upload file: {e}")

    async def get(self, path: str) -> bytes:
        try:
            return await asyncio.to_thread(self._get, path)
        except S3Error as e:
            raise StorageError(f"Failed to download file: {e}")

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(self.client.remove_object, self.bucket, path)
        except S3Error as e:
            raise StorageError(f"Failed to delete file: {e}")

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            return await asyncio.to_thread(
                self.client.presigned_get_object, self.bucket, path, expires=timedelta(seconds=ttl_seconds)
            )
        except S3Error as e:
            raise StorageError(f"Failed to create signed URL: {e}")


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        if settings.storage_backend == "minio":
            _blob_store = MinioBlobStore()
        else:
            _blob_store = LocalBlobStore()
    return _blob_store
