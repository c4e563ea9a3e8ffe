"""Filesystem-backed blob store.

Blobs live under ``root_dir`` at their slash-separated path, each with a
``<name>.meta.json`` sidecar holding the content type.  Content types
outside the allowed list are stored as ``application/octet-stream``.

Signed URLs carry an expiry timestamp and an HMAC-SHA256 signature over
``path`` and expiry; :meth:`LocalBlobStore.verify_signed_url` checks both.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from datetime import timedelta
from pathlib import Path, PurePosixPath
from urllib.parse import parse_qs, quote, unquote, urlsplit

import structlog

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.utils.errors import ConfigurationError, StorageError

logger = structlog.get_logger(logger_name=__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "image/png",
        "image/jpeg",
        "text/plain",
        "application/octet-stream",
    }
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_META_SUFFIX = ".meta.json"


def sanitize_content_type(content_type: str | None) -> str:
    """Return *content_type* if allowed, else ``application/octet-stream``."""
    if not content_type:
        return DEFAULT_CONTENT_TYPE
    base = content_type.split(";", 1)[0].strip().lower()
    return base if base in ALLOWED_CONTENT_TYPES else DEFAULT_CONTENT_TYPE


class LocalBlobStore(IBlobStore):
    """Blob store over a local directory."""

    def __init__(
        self,
        root_dir: str | Path,
        signing_secret: str,
        base_url: str = "http://localhost:8080/blobs",
    ) -> None:
        if not signing_secret:
            raise ConfigurationError(
                message="BLOB_SIGNING_SECRET is not set", provider_name="local-blob"
            )
        self._root = Path(root_dir).resolve()
        self._secret = signing_secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # IBlobStore implementation
    # ------------------------------------------------------------------

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(
                message=f"Blob not found: {path}", provider_name=self.get_provider_name()
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Cannot read blob {path}: {exc}", provider_name=self.get_provider_name()
            ) from exc

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        stored_type = sanitize_content_type(content_type)
        try:
            await asyncio.to_thread(self._write, target, data, stored_type)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot write blob {path}: {exc}", provider_name=self.get_provider_name()
            ) from exc
        logger.info("blob_stored", path=path, size=len(data), content_type=stored_type)
        return self.url_for(path)

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(target.unlink, True)
            await asyncio.to_thread(self._meta_path(target).unlink, True)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot delete blob {path}: {exc}", provider_name=self.get_provider_name()
            ) from exc
        logger.info("blob_deleted", path=path)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def signed_url(self, path: str, validity: timedelta) -> str:
        if validity.total_seconds() <= 0:
            raise StorageError(
                message="Signed URL validity must be positive",
                provider_name=self.get_provider_name(),
            )
        self._resolve(path)
        expires = int(time.time() + validity.total_seconds())
        signature = self._sign(path, expires)
        return f"{self.url_for(path)}?expires={expires}&signature={signature}"

    def get_provider_name(self) -> str:
        return "local-blob"

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    async def content_type(self, path: str) -> str:
        meta = self._meta_path(self._resolve(path))
        try:
            raw = await asyncio.to_thread(meta.read_text, "utf-8")
        except FileNotFoundError:
            return DEFAULT_CONTENT_TYPE
        return json.loads(raw).get("content_type", DEFAULT_CONTENT_TYPE)

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{quote(self._normalise(path))}"

    def verify_signed_url(self, url: str, now: float | None = None) -> bool:
        """Return ``True`` if *url* was signed by this store and has not expired."""
        parts = urlsplit(url)
        prefix = urlsplit(self._base_url).path.rstrip("/") + "/"
        if not parts.path.startswith(prefix):
            return False
        path = unquote(parts.path[len(prefix):])
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, ValueError, IndexError):
            return False
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(signature, self._sign(path, expires))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalise(path: str) -> str:
        return str(PurePosixPath("/", path.strip()).relative_to("/"))

    def _resolve(self, path: str) -> Path:
        if not path or not path.strip() or path.strip() in (".", "/"):
            raise StorageError(message="Blob path is empty", provider_name=self.get_provider_name())
        target = (self._root / self._normalise(path)).resolve()
        if target != self._root and self._root not in target.parents:
            raise StorageError(
                message=f"Blob path escapes the store root: {path}",
                provider_name=self.get_provider_name(),
            )
        if target.name.endswith(_META_SUFFIX):
            raise StorageError(
                message=f"Reserved blob name: {path}", provider_name=self.get_provider_name()
            )
        return target

    @staticmethod
    def _meta_path(target: Path) -> Path:
        return target.with_name(target.name + _META_SUFFIX)

    def _write(self, target: Path, data: bytes, content_type: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
        self._meta_path(target).write_text(
            json.dumps({"content_type": content_type, "size": len(data)}), encoding="utf-8"
        )

    def _sign(self, path: str, expires: int) -> str:
        message = f"{self._normalise(path)}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()
