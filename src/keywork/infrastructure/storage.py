"""Object storage for job deliverables.

Deliverable files are stored under ``jobs/{job_id}/{deliverable_id}{ext}``
keys. The ObjectStore protocol is deliberately small (put / get / delete)
so a bucket-backed store can replace the local one without touching the
job service.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from keywork.domain.exceptions import NotFoundError, UpstreamUnavailableError
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from keywork.config import Settings

logger = get_logger(__name__)


@runtime_checkable
class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None: ...

    async def get(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...


def deliverable_key(job_id: object, deliverable_id: object, filename: str | None) -> str:
    suffix = Path(filename).suffix.lower() if filename else ""
    return f"jobs/{job_id}/{deliverable_id}{suffix}"


class InMemoryObjectStore:
    """Dict-backed store for tests and the simulation."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str | None]] = {}

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        self.objects[key] = (data, content_type)

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key][0]
        except KeyError:
            raise NotFoundError("Object", key) from None

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)


class LocalObjectStore:
    """Directory-backed store. File I/O runs in a worker thread."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise ValueError(f"Storage key escapes the storage root: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("storage.put_failed", key=key, error=str(exc))
            raise UpstreamUnavailableError("Object storage", str(exc)) from exc

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError("Object", key) from None
        except OSError as exc:
            raise UpstreamUnavailableError("Object storage", str(exc)) from exc

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise UpstreamUnavailableError("Object storage", str(exc)) from exc


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        logger.info("storage.local", root=settings.storage_local_path)
        return LocalObjectStore(settings.storage_local_path)
    return InMemoryObjectStore()
