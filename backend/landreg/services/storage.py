"""
Supabase Storage service.

BlobStore wraps one bucket with the operations the pipeline needs: put,
create-if-absent, get, exists, delete, recursive listing and signed URLs.
The supabase client is synchronous, so every call is pushed to a worker
thread to keep the event loop free.

Buckets used:
  pending-hmlr-emails  transient attachments, metadata, pair declarations,
                       claims and processing results
  title-deeds          permanent archive of title register PDFs
"""

import asyncio
import json
import logging
import os
from typing import Any
from urllib.parse import urlparse, urlunparse

from landreg.db import get_supabase_admin

logger = logging.getLogger(__name__)

_LIST_PAGE_SIZE = 1000


class StorageError(Exception):
    """Raised when a storage operation fails."""
    def __init__(self, message: str, error_code: str = "storage_error"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class BlobNotFound(StorageError):
    """Raised when a requested object does not exist."""
    def __init__(self, path: str):
        super().__init__(f"Object not found: {path}", "not_found")
        self.path = path


def _error_status(exc: Exception) -> str:
    status = getattr(exc, "status", None) or getattr(exc, "code", None)
    if status is None and exc.args and isinstance(exc.args[0], dict):
        status = exc.args[0].get("statusCode")
    return str(status) if status is not None else ""


def _is_not_found(exc: Exception) -> bool:
    return _error_status(exc) == "404" or "not found" in str(exc).lower()


def _is_duplicate(exc: Exception) -> bool:
    text = str(exc).lower()
    return (
        _error_status(exc) == "409"
        or "duplicate" in text
        or "already exists" in text
    )


def _rewrite_signed_url_host(signed_url: str) -> str:
    """
    Replace the host in a signed URL with SUPABASE_PUBLIC_URL when it is set.

    Inside Docker the service reaches Supabase through an internal host that
    is useless to whoever opens the link.
    """
    public_url = os.getenv("SUPABASE_PUBLIC_URL", "").strip()
    if not public_url:
        return signed_url

    parsed_signed = urlparse(signed_url)
    parsed_public = urlparse(public_url)

    return urlunparse((
        parsed_public.scheme,
        parsed_public.netloc,
        parsed_signed.path,
        parsed_signed.params,
        parsed_signed.query,
        parsed_signed.fragment,
    ))


class BlobStore:
    """Async facade over one Supabase Storage bucket."""

    def __init__(self, bucket: str, client: Any = None):
        self.bucket = bucket
        self._client = client

    def _bucket(self):
        if self._client is None:
            self._client = get_supabase_admin()
        return self._client.storage.from_(self.bucket)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        """Write an object, overwriting whatever is at the path."""
        try:
            await asyncio.to_thread(
                self._bucket().upload,
                path,
                content,
                {"content-type": content_type, "upsert": "true"},
            )
        except Exception as e:
            raise StorageError(f"Failed to upload {self.bucket}/{path}: {str(e)}")
        return path

    async def put_if_absent(self, path: str, content: bytes, content_type: str = "application/json") -> bool:
        """
        Write an object only if nothing exists at the path.

        Returns:
            True if this call created the object, False if it already existed.
        """
        try:
            await asyncio.to_thread(
                self._bucket().upload,
                path,
                content,
                {"content-type": content_type, "upsert": "false"},
            )
            return True
        except Exception as e:
            if _is_duplicate(e):
                return False
            raise StorageError(f"Failed to create {self.bucket}/{path}: {str(e)}")

    async def put_json(self, path: str, data: Any) -> str:
        body = json.dumps(data, default=str).encode("utf-8")
        return await self.put(path, body, "application/json")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, path: str) -> bytes:
        try:
            return await asyncio.to_thread(self._bucket().download, path)
        except Exception as e:
            if _is_not_found(e):
                raise BlobNotFound(path)
            raise StorageError(f"Failed to download {self.bucket}/{path}: {str(e)}")

    async def get_json(self, path: str) -> Any:
        return json.loads(await self.get(path))

    async def exists(self, path: str) -> bool:
        folder, _, name = path.rpartition("/")
        try:
            entries = await asyncio.to_thread(
                self._bucket().list, folder, {"limit": 100, "search": name}
            )
        except Exception as e:
            raise StorageError(f"Failed to list {self.bucket}/{folder}: {str(e)}")
        return any(entry.get("name") == name for entry in entries or [])

    async def list_by_prefix(self, prefix: str = "") -> list[str]:
        """
        Return the full path of every object under prefix, recursively.

        Supabase lists one level at a time; folder entries have no id.
        """
        prefix = prefix.strip("/")
        paths: list[str] = []
        offset = 0
        while True:
            try:
                entries = await asyncio.to_thread(
                    self._bucket().list,
                    prefix,
                    {"limit": _LIST_PAGE_SIZE, "offset": offset},
                )
            except Exception as e:
                raise StorageError(f"Failed to list {self.bucket}/{prefix}: {str(e)}")

            entries = entries or []
            for entry in entries:
                name = entry.get("name")
                if not name or name == ".emptyFolderPlaceholder":
                    continue
                full = f"{prefix}/{name}" if prefix else name
                if entry.get("id") is None:
                    paths.extend(await self.list_by_prefix(full))
                else:
                    paths.append(full)

            if len(entries) < _LIST_PAGE_SIZE:
                return paths
            offset += _LIST_PAGE_SIZE

    async def signed_url(self, path: str, expiry_seconds: int = 3600) -> str:
        try:
            result = await asyncio.to_thread(
                self._bucket().create_signed_url, path, expiry_seconds
            )
        except Exception as e:
            if _is_not_found(e):
                raise BlobNotFound(path)
            raise StorageError(f"Failed to generate signed URL: {str(e)}")

        url = (result or {}).get("signedURL") or (result or {}).get("signedUrl")
        if not url:
            raise StorageError("No signed URL returned from storage")
        return _rewrite_signed_url_host(url)

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete(self, paths: str | list[str]) -> int:
        """
        Delete one or more objects. Missing objects are not an error.

        Returns:
            Number of objects storage reported as removed.
        """
        if isinstance(paths, str):
            paths = [paths]
        if not paths:
            return 0
        try:
            result = await asyncio.to_thread(self._bucket().remove, paths)
        except Exception as e:
            if _is_not_found(e):
                return 0
            raise StorageError(f"Failed to delete from {self.bucket}: {str(e)}")
        return len(result or [])

    async def delete_prefix(self, prefix: str) -> int:
        paths = await self.list_by_prefix(prefix)
        removed = await self.delete(paths)
        logger.info(f"Deleted {removed} object(s) under {self.bucket}/{prefix}")
        return removed

    async def ping(self) -> list[str]:
        """Bucket names visible to the client, for health checks."""
        if self._client is None:
            self._client = get_supabase_admin()
        buckets = await asyncio.to_thread(self._client.storage.list_buckets)
        return [b.name for b in buckets]
