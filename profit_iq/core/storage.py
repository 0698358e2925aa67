import logging
import re
import time
from pathlib import Path
from typing import Optional

import httpx
from supabase import create_client

from profit_iq.core.config import get_settings
from profit_iq.core.errors import FetchFailure, PersistenceError

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9.-]")


def safe_file_name(filename: Optional[str]) -> str:
    name = Path(filename or "file").name
    return _SAFE_NAME_RE.sub("_", name) or "file"


def build_document_path(project_id: str, filename: Optional[str]) -> str:
    return f"documents/{project_id}/{int(time.time() * 1000)}-{safe_file_name(filename)}"


def build_email_path(project_id: str) -> str:
    return f"projects/{project_id}/emails/email-{int(time.time() * 1000)}.eml"


def build_attachment_path(project_id: str, filename: Optional[str]) -> str:
    return f"projects/{project_id}/attachments/{int(time.time() * 1000)}-{safe_file_name(filename)}"


class BlobStorage:
    """Supabase storage wrapper; callers only ever see opaque object URLs."""

    def __init__(self, *, url: str, key: str, bucket: str, fetch_timeout_seconds: float = 20.0) -> None:
        self._url = url.rstrip("/")
        self._key = key
        self._bucket = bucket
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._client = None

    @classmethod
    def from_settings(cls) -> "BlobStorage":
        settings = get_settings()
        return cls(
            url=settings.supabase_url,
            key=settings.supabase_service_role_key or settings.supabase_key,
            bucket=settings.storage_bucket,
            fetch_timeout_seconds=settings.ai_fetch_timeout_seconds,
        )

    def _storage(self):
        if not self._url or not self._key:
            raise PersistenceError("Storage credentials are not configured")
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client.storage.from_(self._bucket)

    def object_url(self, path: str) -> str:
        return f"{self._url}/storage/v1/object/{self._bucket}/{path}"

    def _path_from_url(self, url: str) -> Optional[str]:
        for prefix in (
            f"{self._url}/storage/v1/object/public/{self._bucket}/",
            f"{self._url}/storage/v1/object/{self._bucket}/",
        ):
            if url.startswith(prefix):
                return url[len(prefix):]
        return None

    def store(self, path: str, content: bytes, content_type: Optional[str]) -> str:
        options = {"content-type": content_type} if content_type else None
        try:
            result = self._storage().upload(path, content, options)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.error("Blob upload failed for %s", path, exc_info=True)
            raise PersistenceError("Failed to store file") from exc

        error = result.get("error") if isinstance(result, dict) else getattr(result, "error", None)
        if error:
            logger.error("Blob upload rejected for %s: %s", path, error)
            raise PersistenceError("Failed to store file")
        return self.object_url(path)

    async def fetch(self, url: str) -> bytes:
        headers = {}
        if self._key and url.startswith(self._url):
            headers = {"Authorization": f"Bearer {self._key}", "apikey": self._key}
        try:
            async with httpx.AsyncClient(timeout=self._fetch_timeout_seconds, follow_redirects=True) as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch document content from %s: %s", url, exc)
            raise FetchFailure("Failed to fetch document content") from exc

    def signed_url(self, url: str, expires_in: int = 300) -> str:
        """Short-lived download link for *url*; non-storage URLs are returned unchanged."""
        path = self._path_from_url(url)
        if path is None:
            return url
        try:
            result = self._storage().create_signed_url(path, expires_in)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.error("Failed to sign %s", path, exc_info=True)
            raise PersistenceError("Failed to create download link") from exc
        signed = (result or {}).get("signedURL") or (result or {}).get("signedUrl")
        if not signed:
            raise PersistenceError("Failed to create download link")
        if signed.startswith("/"):
            signed = f"{self._url}/storage/v1{signed}"
        return signed

    def delete(self, url: str) -> bool:
        """Remove the object behind *url*. Failures are logged, never raised."""
        path = self._path_from_url(url)
        if path is None:
            logger.warning("Cannot map %s to a storage object; skipping delete", url)
            return False
        try:
            self._storage().remove([path])
        except Exception:
            logger.warning("Failed to delete blob %s", url, exc_info=True)
            return False
        return True
