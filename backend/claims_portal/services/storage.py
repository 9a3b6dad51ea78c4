"""
Document storage access.

Documents reference their file either by a stored bucket/path or only by the
URL saved at upload time. Private buckets make those URLs unusable, so the
locator falls back to a fresh signed URL, and the API can stream the blob
directly when signing is not wanted.
"""

import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote, urlsplit

import httpx

from claims_portal.core.config import settings
from claims_portal.core.exceptions import PlatformAPIError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"})

_SIGNED_TOKEN = re.compile(r"[?&]token=")
_SIGNED_PATH = re.compile(r"/storage/v1/object/sign/")


@dataclass(frozen=True)
class StorageObject:
    bucket: str
    path: str


def parse_storage_url(url: Optional[str]) -> Optional[StorageObject]:
    """
    Extract bucket and object path from a storage URL.

    Supports ``/object/public/<bucket>/<path>``, ``/object/sign/<bucket>/<path>``
    and the older ``/object/<bucket>/<path>``. The query string is ignored.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parts = [part for part in urlsplit(url).path.split("/") if part]
    except ValueError:
        return None

    if "object" not in parts:
        return None
    idx = parts.index("object")
    if len(parts) < idx + 3:
        return None

    if parts[idx + 1] in ("public", "sign"):
        bucket = parts[idx + 2]
        path = "/".join(parts[idx + 3:])
    else:
        bucket = parts[idx + 1]
        path = "/".join(parts[idx + 2:])

    if not bucket or not path:
        return None
    return StorageObject(bucket=bucket, path=path)


def looks_signed(url: str) -> bool:
    """Signed URLs may have expired and are never reused."""
    return bool(_SIGNED_TOKEN.search(url) or _SIGNED_PATH.search(url))


def stored_url(doc: Any) -> Optional[str]:
    return getattr(doc, "remote_url", None) or getattr(doc, "url", None)


def resolve_storage_object(doc: Any, default_bucket: Optional[str] = None) -> Optional[StorageObject]:
    """Bucket and path of a document, from its stored path or parsed from its URL."""
    bucket = getattr(doc, "bucket", None) or default_bucket or settings.storage_bucket
    path = (
        getattr(doc, "storage_path", None)
        or getattr(doc, "file_path", None)
        or getattr(doc, "path", None)
    )
    if path:
        return StorageObject(bucket=bucket, path=path)

    parsed = parse_storage_url(stored_url(doc))
    if parsed:
        return parsed
    return None


def file_extension(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def is_image_file(extension: str) -> bool:
    return extension.lower() in IMAGE_EXTENSIONS


def preview_kind(file_name: Optional[str]) -> str:
    """``image``, ``pdf`` or ``file``; drives how the viewer renders a document."""
    extension = file_extension(file_name)
    if is_image_file(extension):
        return "image"
    if extension == "pdf":
        return "pdf"
    return "file"


def guess_media_type(file_name: Optional[str]) -> str:
    media_type, _ = mimetypes.guess_type(file_name or "")
    return media_type or "application/octet-stream"


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class StorageClient:
    """Async client for the platform storage endpoints (``/storage/v1``)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = settings.backend_timeout,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        api_key = api_key if api_key is not None else settings.backend_anon_key

        self.client = http_client or httpx.AsyncClient(
            base_url=f"{self.base_url}/storage/v1",
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout=timeout),
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """
        Create a short-lived URL for a private object.

        Raises:
            PlatformAPIError: If the platform refuses or is unreachable
        """
        try:
            response = await self.client.post(
                f"/object/sign/{bucket}/{quote(path)}",
                json={"expiresIn": expires_in},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Signed URL error for {bucket}/{path}: {e.response.status_code} - {e.response.text}")
            raise PlatformAPIError("Failed to create signed URL", detail=e.response.text, status=e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"Storage connection error: {str(e)}")
            raise PlatformAPIError("Failed to create signed URL", detail=str(e)) from e

        body = response.json()
        signed = body.get("signedURL") or body.get("signedUrl")
        if not signed:
            raise PlatformAPIError("Failed to create signed URL", detail="Empty response")
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"

    async def download(self, bucket: str, path: str) -> bytes:
        try:
            response = await self.client.get(f"/object/{bucket}/{quote(path)}")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Download error for {bucket}/{path}: {e.response.status_code}")
            raise PlatformAPIError("Failed to download document", status=e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"Storage connection error: {str(e)}")
            raise PlatformAPIError("Failed to download document", detail=str(e)) from e
        return response.content

    async def probe(self, url: str) -> int:
        """HEAD the URL and return its status code; transport errors propagate."""
        response = await self.client.head(url)
        return response.status_code


class DocumentLocator:
    """Turns a document row into a URL a reviewer can open."""

    def __init__(self, storage: StorageClient, default_bucket: Optional[str] = None):
        self.storage = storage
        self.default_bucket = default_bucket or settings.storage_bucket

    async def get_document_url(
        self,
        doc: Any,
        expires_in: int = settings.signed_url_expiry_seconds,
        force_signed: bool = False,
    ) -> Optional[str]:
        """
        Resolve a viewable URL for a document.

        The stored URL is used when it is unsigned and a HEAD probe does not
        answer 401/403. Otherwise a fresh signed URL is created. When neither
        works the stored URL (possibly None) is returned.
        """
        initial_url = stored_url(doc)

        if initial_url and not force_signed and not looks_signed(initial_url):
            try:
                status = await self.storage.probe(initial_url)
                if status not in (401, 403):
                    return initial_url
                logger.warning(f"Stored URL for document {getattr(doc, 'id', '?')} returned {status}")
            except httpx.HTTPError as e:
                logger.warning(f"HEAD probe failed for {initial_url}: {str(e)}")

        obj = resolve_storage_object(doc, self.default_bucket)
        if obj:
            try:
                return await self.storage.create_signed_url(obj.bucket, obj.path, expires_in)
            except PlatformAPIError as e:
                logger.error(f"Falling back to stored URL: {e.message}")

        return initial_url

    async def download(self, doc: Any) -> bytes:
        obj = resolve_storage_object(doc, self.default_bucket)
        if obj is None:
            raise PlatformAPIError("Unable to locate file path for this document")
        return await self.storage.download(obj.bucket, obj.path)


# Global client instance
_storage_client: Optional[StorageClient] = None


def get_storage_client() -> StorageClient:
    global _storage_client

    if _storage_client is None:
        _storage_client = StorageClient()

    return _storage_client


async def close_storage_client() -> None:
    global _storage_client

    if _storage_client is not None:
        await _storage_client.close()
        _storage_client = None
