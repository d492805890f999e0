# services/object_store.py
from typing import Optional, Protocol
from uuid import uuid4
import logging
import re

import httpx

import config
from models.storage import StoredObject, Upload
from .errors import UploadError

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    async def upload(self, upload: Upload, path: str) -> StoredObject: ...

    async def delete(self, key: str) -> None: ...


def validate_upload(upload: Upload, kind: str):
    """Reject a file whose MIME type or size does not fit the content kind."""
    allowed = config.ALLOWED_UPLOAD_TYPES.get(kind)
    if allowed is None:
        raise UploadError(f"Unsupported upload kind: {kind}")
    if upload.content_type not in allowed:
        raise UploadError(f"Invalid file type {upload.content_type} for {kind}")
    limit = config.MAX_UPLOAD_SIZE[kind]
    if upload.size == 0:
        raise UploadError(f"Uploaded {kind} file is empty")
    if upload.size > limit:
        raise UploadError(f"{kind} file too large. Maximum size is {limit // config.MB}MB")


def _safe_name(filename: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", filename) or "upload"


class HttpObjectStore:
    def __init__(self, base_url: str = config.OBJECT_STORE_URL, token: str = config.OBJECT_STORE_TOKEN,
                 timeout: float = config.OBJECT_STORE_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self.transport)

    async def upload(self, upload: Upload, path: str) -> StoredObject:
        key = f"{path.strip('/')}/{uuid4().hex}-{_safe_name(upload.filename)}"
        logger.info(f"Uploading {upload.filename} ({upload.size} bytes) as {key}")
        try:
            async with self._client() as client:
                response = await client.put(
                    f"{self.base_url}/{key}",
                    content=upload.data,
                    headers={"Content-Type": upload.content_type},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Object store rejected {key}: {e.response.status_code}")
            raise UploadError(f"Failed to upload {upload.filename}: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Object store unreachable while uploading {key}: {e}")
            raise UploadError(f"Failed to upload {upload.filename}: {e}") from e

        url = f"{self.base_url}/{key}"
        if response.headers.get("content-type", "").startswith("application/json"):
            url = response.json().get("url", url)
        return StoredObject(url=url, key=key)

    async def delete(self, key: str) -> None:
        logger.info(f"Deleting blob {key}")
        async with self._client() as client:
            response = await client.delete(f"{self.base_url}/{key}")
            if response.status_code != 404:
                response.raise_for_status()


def get_object_store() -> ObjectStore:
    """Object store dependency"""
    return HttpObjectStore()
