"""Persistence backends for zone records.

A store is a flat document map per scene: ``zone id -> attribute map``.
Writes replace whole records; there is no field-level merge and no
conflict detection, so concurrent writers of the same record resolve
last-write-wins.

Only the ``ZoneManager`` talks to a store.  Three implementations are
provided:

* ``InMemoryZoneStore`` keeps documents in a dict (tests, previews).
* ``JsonFileZoneStore`` keeps one JSON document per scene on disk.
* ``HttpZoneStore`` talks to a REST document service through
  ``httpx``.

Use ``create_store`` to pick one from ``Settings``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx

from scenezone.config.settings import Settings
from scenezone.models.zone import ZoneRecord

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A store read or write failed.

    Attributes:
        scene_id: Scene the operation targeted.
        zone_id: Zone the operation targeted, or empty for scene-wide
            operations.
    """

    def __init__(self, message: str, scene_id: str = "", zone_id: str = "") -> None:
        super().__init__(message)
        self.scene_id = scene_id
        self.zone_id = zone_id


def _require_persistable(record: ZoneRecord) -> None:
    if record.is_volatile:
        raise ValueError("Volatile zone records cannot be persisted")


class ZoneStore(ABC):
    """Abstract document store for the zones of a scene."""

    @abstractmethod
    async def load_all(self, scene_id: str) -> list[ZoneRecord]:
        """Load every zone stored for *scene_id*.

        Returns:
            Records in storage order, flagged as persisted.

        Raises:
            PersistenceError: If the store cannot be read.
        """

    @abstractmethod
    async def save_one(self, scene_id: str, record: ZoneRecord) -> None:
        """Write the full record, replacing any stored version.

        Raises:
            ValueError: If the record is volatile.
            PersistenceError: If the write fails.
        """

    @abstractmethod
    async def delete_one(self, scene_id: str, zone_id: str) -> None:
        """Delete one zone.  Deleting an unknown id is not an error.

        Raises:
            PersistenceError: If the delete fails.
        """

    @abstractmethod
    async def delete_all(self, scene_id: str) -> list[str]:
        """Delete every zone of *scene_id*.

        Returns:
            The ids that were deleted.

        Raises:
            PersistenceError: If the delete fails.
        """


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryZoneStore(ZoneStore):
    """Dict-backed store.  Documents are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, dict[str, Any]]] = {}

    async def load_all(self, scene_id: str) -> list[ZoneRecord]:
        docs = self.documents.get(scene_id, {})
        return [ZoneRecord.from_dict(copy.deepcopy(d), persisted=True) for d in docs.values()]

    async def save_one(self, scene_id: str, record: ZoneRecord) -> None:
        _require_persistable(record)
        self.documents.setdefault(scene_id, {})[record.id] = record.to_dict()

    async def delete_one(self, scene_id: str, zone_id: str) -> None:
        self.documents.get(scene_id, {}).pop(zone_id, None)

    async def delete_all(self, scene_id: str) -> list[str]:
        return list(self.documents.pop(scene_id, {}).keys())


# ---------------------------------------------------------------------------
# JSON files
# ---------------------------------------------------------------------------


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileZoneStore(ZoneStore):
    """One ``<scene>.json`` file per scene under a base directory.

    Every write rewrites the scene document.  File I/O runs in a worker
    thread so the event loop is not blocked.  Read-modify-write cycles
    are serialised by a lock, so concurrent saves of one batch all land.

    Args:
        base_dir: Directory holding the scene documents.  Created on the
            first write.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base = Path(base_dir)
        self._lock = threading.Lock()

    def scene_path(self, scene_id: str) -> Path:
        return self._base / f"{_UNSAFE_CHARS.sub('_', scene_id)}.json"

    def _read(self, scene_id: str) -> dict[str, dict[str, Any]]:
        path = self.scene_path(scene_id)
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}", scene_id) from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"Unexpected document structure in {path}", scene_id)
        return data

    def _write(self, scene_id: str, docs: dict[str, dict[str, Any]]) -> None:
        path = self.scene_path(scene_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(docs, fh, indent=2, ensure_ascii=False)
            tmp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Cannot write {path}: {exc}", scene_id) from exc

    def _save_sync(self, scene_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            docs = self._read(scene_id)
            docs[data["id"]] = data
            self._write(scene_id, docs)

    def _delete_sync(self, scene_id: str, zone_id: str) -> None:
        with self._lock:
            docs = self._read(scene_id)
            if docs.pop(zone_id, None) is not None:
                self._write(scene_id, docs)

    def _delete_all_sync(self, scene_id: str) -> list[str]:
        path = self.scene_path(scene_id)
        with self._lock:
            docs = self._read(scene_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"Cannot delete {path}: {exc}", scene_id) from exc
        return list(docs.keys())

    def _load_sync(self, scene_id: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return self._read(scene_id)

    async def load_all(self, scene_id: str) -> list[ZoneRecord]:
        docs = await asyncio.to_thread(self._load_sync, scene_id)
        return [ZoneRecord.from_dict(d, persisted=True) for d in docs.values()]

    async def save_one(self, scene_id: str, record: ZoneRecord) -> None:
        _require_persistable(record)
        await asyncio.to_thread(self._save_sync, scene_id, record.to_dict())

    async def delete_one(self, scene_id: str, zone_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, scene_id, zone_id)

    async def delete_all(self, scene_id: str) -> list[str]:
        return await asyncio.to_thread(self._delete_all_sync, scene_id)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpZoneStore(ZoneStore):
    """REST document store client.

    Endpoints, relative to *base_url*::

        GET    /scenes/{scene}/zones         -> {id: record, ...} or [record, ...]
        PUT    /scenes/{scene}/zones/{id}    <- record
        DELETE /scenes/{scene}/zones/{id}
        DELETE /scenes/{scene}/zones

    Failed requests are not retried; the caller keeps its in-memory
    state and writes again on the next edit.

    Args:
        base_url: Root URL of the document service.
        timeout_seconds: Per-request timeout.
        transport: Optional ``httpx`` transport, e.g. a
            ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._transport = transport

    def _collection_url(self, scene_id: str) -> str:
        return f"{self._base_url}/scenes/{scene_id}/zones"

    async def _request(
        self,
        method: str,
        url: str,
        scene_id: str,
        zone_id: str = "",
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Store %s %s failed: %s", method, url, exc)
            raise PersistenceError(
                f"{type(exc).__name__}: {exc}", scene_id, zone_id
            ) from exc

        if response.status_code == 404 and method == "DELETE":
            return response
        if response.status_code >= 400:
            logger.warning("Store %s %s returned HTTP %d", method, url, response.status_code)
            raise PersistenceError(
                f"HTTP {response.status_code}: {response.text[:200]}", scene_id, zone_id
            )
        return response

    async def load_all(self, scene_id: str) -> list[ZoneRecord]:
        response = await self._request("GET", self._collection_url(scene_id), scene_id)
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Invalid JSON from store: {exc}", scene_id) from exc
        items = list(data.values()) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise PersistenceError("Unexpected document structure from store", scene_id)
        return [ZoneRecord.from_dict(item, persisted=True) for item in items]

    async def save_one(self, scene_id: str, record: ZoneRecord) -> None:
        _require_persistable(record)
        url = f"{self._collection_url(scene_id)}/{record.id}"
        await self._request("PUT", url, scene_id, record.id, payload=record.to_dict())

    async def delete_one(self, scene_id: str, zone_id: str) -> None:
        url = f"{self._collection_url(scene_id)}/{zone_id}"
        await self._request("DELETE", url, scene_id, zone_id)

    async def delete_all(self, scene_id: str) -> list[str]:
        ids = [record.id for record in await self.load_all(scene_id)]
        await self._request("DELETE", self._collection_url(scene_id), scene_id)
        return ids


def create_store(settings: Settings) -> ZoneStore:
    """Pick a store backend from *settings*.

    Returns:
        An ``HttpZoneStore`` when ``store_url`` is set, otherwise a
        ``JsonFileZoneStore`` rooted at ``store_dir``.
    """
    if settings.store_url:
        return HttpZoneStore(settings.store_url, settings.store_timeout_seconds)
    return JsonFileZoneStore(settings.store_dir)
