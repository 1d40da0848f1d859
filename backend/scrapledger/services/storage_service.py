# Overview: Attachment storage backends (local filesystem and HTTP object storage).

"""
A backend stores bytes under (bucket, name) and returns an opaque, stable
reference string. Nothing else in the engine looks inside a reference.

Backends must be safe to call from worker threads: they never touch the
Flask app context or the database session.
"""

from __future__ import annotations

from pathlib import Path

import httpx


class StorageError(RuntimeError):
    """Raised when a backend cannot store an object."""


class StorageBackend:
    def upload(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError


class LocalStorageBackend(StorageBackend):
    """Writes objects to <root>/<bucket>/<name>. Intended for development and tests."""

    def __init__(self, root: str | Path, base_url: str | None = None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _path(self, bucket: str, name: str) -> Path:
        path = (self.root / bucket / name).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Refusing to write outside storage root: {bucket}/{name}")
        return path

    def reference(self, bucket: str, name: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{bucket}/{name}"
        return f"local://{bucket}/{name}"

    def upload(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        path = self._path(bucket, name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {bucket}/{name}: {exc}") from exc
        return self.reference(bucket, name)


class HttpStorageBackend(StorageBackend):
    """
    Object storage over HTTP.

    Upload:  PUT  {endpoint}/object/{bucket}/{name}   (x-upsert: true)
    Public:  {public_base_url}/{bucket}/{name}

    Uploads overwrite: object names are deterministic per transaction slot, so
    re-saving a transaction replaces the same objects instead of failing.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        token: str | None = None,
        public_base_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.public_base_url = (public_base_url or f"{self.endpoint}/object/public").rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.Client(timeout=timeout, headers=headers)
        if client is not None and headers:
            self.client.headers.update(headers)

    def upload(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        try:
            response = self.client.put(
                f"{self.endpoint}/object/{bucket}/{name}",
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "true"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {bucket}/{name} failed: {exc}") from exc
        return f"{self.public_base_url}/{bucket}/{name}"


def build_storage_backend(config) -> StorageBackend:
    """Pick the backend named by ATTACHMENT_STORAGE."""
    kind = (config.get("ATTACHMENT_STORAGE") or "local").lower()
    if kind == "local":
        return LocalStorageBackend(
            config.get("ATTACHMENT_LOCAL_ROOT") or "attachments",
            base_url=config.get("ATTACHMENT_BASE_URL"),
        )
    if kind == "http":
        endpoint = config.get("ATTACHMENT_HTTP_ENDPOINT")
        if not endpoint:
            raise ValueError("ATTACHMENT_HTTP_ENDPOINT is required when ATTACHMENT_STORAGE=http")
        return HttpStorageBackend(
            endpoint,
            token=config.get("ATTACHMENT_HTTP_TOKEN"),
            public_base_url=config.get("ATTACHMENT_BASE_URL"),
            timeout=float(config.get("ATTACHMENT_UPLOAD_TIMEOUT") or 10.0),
        )
    raise ValueError(f"Unknown ATTACHMENT_STORAGE '{kind}'. Must be one of: local, http")
