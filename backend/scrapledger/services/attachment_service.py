# Overview: Attachment upload pipeline; turns inline image payloads into storage references.

"""
Attachment Upload Pipeline

Input entries are either:
- a storage reference (anything that is not a data URI): passed through
  unchanged, never re-uploaded
- an inline payload "data:<mime>;base64,<data>": decoded, validated and
  uploaded

DEGRADE GRACEFULLY: every upload runs independently with its own timeout,
measured from when a worker starts it rather than from submission.
A failed or timed-out upload produces no reference for that entry; siblings
and the enclosing transaction save carry on. Losing one photo must never
lose the transaction. Failures are logged as diagnostics only.

NAMING: objects are named from the owner identity and the 1-based position
in the input list, e.g. session-TXN-00000007-2.png or
item-TXN-00000007-0-1.jpg, so a retried save writes the same slots.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

from .storage_service import StorageBackend


logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)

MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024  # 5MB
ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

# slot -> bucket
BUCKETS = {
    "session": "transaction-images",
    "item": "item-images",
}


class AttachmentError(ValueError):
    """One attachment could not be decoded or stored. Never escapes materialize()."""


def is_inline_payload(value: str) -> bool:
    return value.startswith("data:")


def decode_inline_payload(value: str) -> tuple[str, bytes]:
    """Return (content_type, bytes) for a data URI, validating type and size."""
    match = DATA_URI_RE.match(value)
    if not match:
        raise AttachmentError("Invalid base64 data URI")

    content_type = match.group(1).lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise AttachmentError(f"Unsupported file type: {content_type}")

    try:
        data = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AttachmentError(f"Malformed base64 payload: {exc}") from exc

    if len(data) > MAX_ATTACHMENT_BYTES:
        raise AttachmentError(
            f"File too large. Maximum size is {MAX_ATTACHMENT_BYTES // (1024 * 1024)}MB"
        )
    return content_type, data


def object_name(slot: str, owner: str, index: int, content_type: str) -> str:
    return f"{slot}-{owner}-{index}.{ALLOWED_CONTENT_TYPES[content_type]}"


class _UploadJob:
    """One queued upload. Its timeout starts when a worker picks it up."""

    def __init__(self, name: str):
        self.name = name
        self.started = threading.Event()
        self.started_at = 0.0
        self.future = None


class AttachmentPipeline:
    """
    Uploads inline payloads through a StorageBackend on a shared worker pool.

    The pool outlives individual calls so a hung upload cannot hold up the
    caller past its timeout.
    """

    def __init__(self, backend: StorageBackend, *, timeout: float = 10.0, max_workers: int = 4):
        self.backend = backend
        self.timeout = timeout
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="attachment-upload",
                )
            return self._executor

    def _upload_one(self, bucket: str, name: str, payload: str) -> str:
        content_type, data = decode_inline_payload(payload)
        return self.backend.upload(bucket, name, data, content_type)

    def _run_job(self, job: _UploadJob, bucket: str, payload: str) -> str:
        job.started_at = time.monotonic()
        job.started.set()
        return self._upload_one(bucket, job.name, payload)

    def _wait(self, job: _UploadJob, start_deadline: float) -> str:
        if not job.started.wait(max(0.0, start_deadline - time.monotonic())):
            raise FutureTimeoutError()
        remaining = job.started_at + self.timeout - time.monotonic()
        return job.future.result(timeout=max(0.0, remaining))

    def materialize(self, payloads: list[str] | None, *, owner: str, slot: str) -> list[str]:
        """
        Convert payloads to storage references, preserving input order.

        Failed entries are omitted, so the result may be shorter than the
        input. Never raises for an individual upload failure.
        """
        if not payloads:
            return []
        if slot not in BUCKETS:
            raise ValueError(f"Unknown attachment slot '{slot}'")
        bucket = BUCKETS[slot]

        results: list[str | None] = [None] * len(payloads)
        pending = {}

        for position, payload in enumerate(payloads):
            index = position + 1
            if not is_inline_payload(payload):
                results[position] = payload
                continue
            match = DATA_URI_RE.match(payload)
            content_type = match.group(1).lower() if match else None
            if content_type not in ALLOWED_CONTENT_TYPES:
                logger.warning(
                    "Skipping %s attachment %d for %s: unsupported or malformed payload",
                    slot, index, owner,
                )
                continue
            job = _UploadJob(object_name(slot, owner, index, content_type))
            job.future = self._pool().submit(self._run_job, job, bucket, payload)
            pending[position] = job

        # A queued upload must start within the time the uploads ahead of it may take
        waves = math.ceil(len(pending) / self.max_workers) if pending else 0
        start_deadline = time.monotonic() + self.timeout * waves
        for position, job in pending.items():
            try:
                results[position] = self._wait(job, start_deadline)
            except FutureTimeoutError:
                job.future.cancel()
                logger.warning("Upload of %s/%s timed out after %.1fs", bucket, job.name, self.timeout)
            except Exception:
                logger.warning("Upload of %s/%s failed", bucket, job.name, exc_info=True)

        references = [ref for ref in results if ref]
        if pending:
            logger.info(
                "Materialized %d of %d %s attachments for %s",
                len(references), len(payloads), slot, owner,
            )
        return references
