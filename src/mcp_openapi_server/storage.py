"""JSON-file descriptor store.

All mutations go through one ``asyncio.Lock`` and are written to disk (temp
file + fsync + rename) before the in-memory snapshot is swapped. Readers never
lock: they see the tuple that was current when they looked.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from .errors import (
    ConflictError,
    CorruptStoreError,
    NotFoundError,
    StoreIOError,
)
from .models.schemas import (
    APIDescriptor,
    ApiStatus,
    StoreDocument,
    StoreInfo,
    build_descriptor,
    restore_masked_secrets,
    utcnow,
)

logger = structlog.get_logger(__name__)


class DescriptorStore:
    """Persistent, uniquely-indexed set of :class:`APIDescriptor`."""

    def __init__(self, path: Path | str, reserved_names: Iterable[str] = ()):
        self.path = Path(path).expanduser()
        self.reserved_names = frozenset(reserved_names)
        self._version = "1.0.0"
        self._info = StoreInfo()
        self._descriptors: tuple[APIDescriptor, ...] = ()
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Read the store file. A missing file is an empty store."""
        if not self.path.exists():
            logger.info("Store file not found, starting empty", path=str(self.path))
            self._descriptors = ()
            return 0

        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise StoreIOError(f"Failed to read store file {self.path}: {exc}") from exc

        try:
            document = StoreDocument.model_validate(json.loads(raw.decode("utf-8")))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptStoreError(
                f"Store file {self.path} is not valid UTF-8 JSON: {exc}"
            ) from exc
        except ValidationError as exc:
            raise CorruptStoreError(
                f"Store file {self.path} has invalid content: {exc}"
            ) from exc

        self._check_unique(document.apis)
        self._version = document.version
        self._info = document.info
        self._descriptors = tuple(document.apis)
        logger.info("Store loaded", path=str(self.path), api_count=len(self._descriptors))
        return len(self._descriptors)

    async def save(self) -> None:
        async with self._lock:
            await self._persist(self._descriptors)

    # ------------------------------------------------------------------
    # Queries (lock-free snapshot reads)
    # ------------------------------------------------------------------

    def find(self, id_or_name: str) -> APIDescriptor:
        """Look up by id first, then by name."""
        return self._find_in(self._descriptors, id_or_name)

    def list_descriptors(
        self,
        status: ApiStatus | str | None = None,
        tag: str | None = None,
    ) -> list[APIDescriptor]:
        snapshot = self._descriptors
        if status is not None and status != "all":
            wanted = ApiStatus(status)
            snapshot = tuple(d for d in snapshot if d.status == wanted)
        if tag is not None:
            snapshot = tuple(d for d in snapshot if tag in d.tags)
        return list(snapshot)

    def __len__(self) -> int:
        return len(self._descriptors)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, payload: dict[str, Any] | APIDescriptor) -> APIDescriptor:
        if isinstance(payload, APIDescriptor):
            descriptor = payload
        else:
            descriptor = build_descriptor(payload)

        async with self._lock:
            current = self._descriptors
            if any(d.id == descriptor.id for d in current):
                raise ConflictError(f"API with id '{descriptor.id}' already exists")
            self._check_name_available(descriptor.name, current)
            await self._commit(current + (descriptor,))

        logger.info("API added", api_id=descriptor.id, name=descriptor.name)
        return descriptor

    async def update(self, id_or_name: str, changes: dict[str, Any]) -> APIDescriptor:
        """Merge *changes* field by field into an existing descriptor.

        The merge happens under the writer lock, so concurrent updates of
        different fields are both kept; for the same field the last one wins.
        """
        async with self._lock:
            current = self._descriptors
            existing = self._find_in(current, id_or_name)

            merged = existing.to_storage_dict()
            merged.update(changes)
            if "authentication" in changes:
                merged["authentication"] = restore_masked_secrets(
                    changes["authentication"], existing.authentication
                )
            merged["id"] = existing.id
            merged["created_at"] = existing.created_at
            merged["updated_at"] = utcnow()
            descriptor = build_descriptor(merged)

            self._check_name_available(descriptor.name, current, exclude_id=existing.id)
            await self._commit(
                tuple(descriptor if d.id == existing.id else d for d in current)
            )

        logger.info("API updated", api_id=descriptor.id, name=descriptor.name)
        return descriptor

    async def delete(self, id_or_name: str) -> APIDescriptor:
        async with self._lock:
            current = self._descriptors
            existing = self._find_in(current, id_or_name)
            await self._commit(tuple(d for d in current if d.id != existing.id))

        logger.info("API deleted", api_id=existing.id, name=existing.name)
        return existing

    async def set_status(
        self, id_or_name: str, status: ApiStatus | str
    ) -> APIDescriptor:
        status = ApiStatus(status)
        async with self._lock:
            current = self._descriptors
            existing = self._find_in(current, id_or_name)
            descriptor = existing.model_copy(
                update={"status": status, "updated_at": utcnow()}
            )
            await self._commit(
                tuple(descriptor if d.id == existing.id else d for d in current)
            )

        logger.info("API status changed", api_id=descriptor.id, status=status.value)
        return descriptor

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _commit(self, descriptors: tuple[APIDescriptor, ...]) -> None:
        # Caller holds the lock. Memory only changes once the file is durable.
        await self._persist(descriptors)
        self._descriptors = descriptors

    async def _persist(self, descriptors: tuple[APIDescriptor, ...]) -> None:
        document = StoreDocument(
            version=self._version, info=self._info, apis=list(descriptors)
        )
        payload = json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write_atomic, payload)

    def _write_atomic(self, payload: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error("Store write failed", path=str(self.path), error=str(exc))
            raise StoreIOError(f"Failed to write store file {self.path}: {exc}") from exc

    @staticmethod
    def _find_in(
        descriptors: tuple[APIDescriptor, ...], id_or_name: str
    ) -> APIDescriptor:
        for d in descriptors:
            if d.id == id_or_name:
                return d
        for d in descriptors:
            if d.name == id_or_name:
                return d
        raise NotFoundError(f"API '{id_or_name}' not found")

    def _check_name_available(
        self,
        name: str,
        descriptors: tuple[APIDescriptor, ...],
        exclude_id: str | None = None,
    ) -> None:
        if name in self.reserved_names:
            raise ConflictError(f"'{name}' is reserved for a built-in tool")
        for d in descriptors:
            if d.name == name and d.id != exclude_id:
                raise ConflictError(f"API with name '{name}' already exists")

    def _check_unique(self, descriptors: list[APIDescriptor]) -> None:
        ids: set[str] = set()
        names: set[str] = set()
        for d in descriptors:
            if d.id in ids:
                raise CorruptStoreError(f"Duplicate API id '{d.id}' in {self.path}")
            if d.name in names:
                raise CorruptStoreError(f"Duplicate API name '{d.name}' in {self.path}")
            if d.name in self.reserved_names:
                raise CorruptStoreError(
                    f"API name '{d.name}' in {self.path} is reserved for a built-in tool"
                )
            ids.add(d.id)
            names.add(d.name)
