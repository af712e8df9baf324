"""Zone manager: CRUD, undo, selection and interactive edits for one scene.

The ``ZoneManager`` owns the in-memory collection of ``ZoneRecord``
objects of a scene.  It is the only component that mutates records or
talks to the ``ZoneStore``.

Mutations are optimistic: the in-memory collection changes first and
the store write is awaited afterwards.  A failed write raises
``PersistenceError`` to the caller but does not roll the collection
back; the next successful write of the record carries the accumulated
state.

Interactive gestures run through a small state machine::

    IDLE --begin_edit--> DRAFTING --commit_edit--> COMMITTED (-> IDLE)
                                  --cancel_edit--> CANCELLED (-> IDLE)

Pointer moves while ``DRAFTING`` mutate records in memory only.  The
store is written once, when the gesture is committed.

Typical usage::

    manager = ZoneManager("scene-1", InMemoryZoneStore())
    [zone] = await manager.create([{"vertices": [...]}])
    manager.begin_edit([zone.id], EditTarget.VERTEX, origin=(0, 0), handle_index=0)
    manager.continue_edit(PointerEvent(origin=(0, 0), destination=(10, 5)))
    await manager.commit_edit()
    await manager.undo()
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scenezone.config.settings import Settings, get_default_settings
from scenezone.core.ambience import AmbientState, filter_ambience
from scenezone.core.geometry import Vertex, project_onto_line
from scenezone.core.history import HistoryAction, UndoHistory
from scenezone.core.zone_store import PersistenceError, ZoneStore
from scenezone.models.zone import (
    GEOMETRY_FIELDS,
    ZONE_SCHEMA,
    Frame,
    GeometryInvalidError,
    ZoneKind,
    ZoneRecord,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Edit gesture types
# ---------------------------------------------------------------------------


class EditState(Enum):
    """State of the pending geometric edit."""

    IDLE = "idle"
    DRAFTING = "drafting"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class EditTarget(Enum):
    """What a drag gesture manipulates.

    Attributes:
        VERTEX: One vertex of one zone (``handle_index`` is the vertex).
        EDGE: A new vertex inserted on an edge of one zone and then
            dragged (``handle_index`` is the edge start vertex).
        FRAME: The lower-right corner of the frame enclosing every
            edited zone; the zones are rescaled.
        MOVE: Whole zones, translated by the pointer delta.
    """

    VERTEX = "vertex"
    EDGE = "edge"
    FRAME = "frame"
    MOVE = "move"


class Modifier(Enum):
    """Modifier keys held during a pointer event."""

    SHIFT = "shift"
    CTRL = "ctrl"
    ALT = "alt"


@dataclass(frozen=True)
class PointerEvent:
    """One pointer sample of a drag gesture.

    Attributes:
        origin: Scene position where the gesture started.
        destination: Current scene position of the pointer.
        modifiers: Modifier keys held.  ``ALT`` rescales a frame around
            its centre, ``SHIFT`` keeps the frame's aspect ratio.
    """

    origin: tuple[float, float]
    destination: tuple[float, float]
    modifiers: frozenset[Modifier] = frozenset()

    @property
    def delta(self) -> tuple[float, float]:
        return (
            self.destination[0] - self.origin[0],
            self.destination[1] - self.origin[1],
        )

    def has(self, modifier: Modifier) -> bool:
        return modifier in self.modifiers


class EditStateError(RuntimeError):
    """An edit or drawing call does not fit the current gesture state."""


@dataclass
class _PendingEdit:
    target: EditTarget
    zone_ids: list[str]
    handle_index: int | None
    snapshots: dict[str, ZoneRecord]
    frame: Frame | None = None


def _default_notify(message: str) -> None:
    logger.info("%s", message)


def _new_zone_id() -> str:
    return uuid.uuid4().hex[:16]


# ---------------------------------------------------------------------------
# ZoneManager
# ---------------------------------------------------------------------------


class ZoneManager:
    """Owner of every zone of one scene.

    Args:
        scene_id: Key of the scene in the store.
        store: Persistence backend.
        settings: Geometry and history configuration.  Defaults to
            ``get_default_settings()``.
        notify: Callback receiving user-facing notices (for example a
            rejected vertex removal).  Defaults to an info log line.
        scene_bounds: Optional scene rectangle.  Moves and pastes that
            would leave it are not applied.
    """

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def __init__(
        self,
        scene_id: str,
        store: ZoneStore,
        settings: Settings | None = None,
        notify: Callable[[str], None] | None = None,
        scene_bounds: Frame | None = None,
    ) -> None:
        self._scene_id = scene_id
        self._store = store
        self._settings = settings or get_default_settings()
        self._notify = notify or _default_notify
        self._scene_bounds = scene_bounds

        self._zones: dict[str, ZoneRecord] = {}
        self._selected: dict[str, None] = {}
        self._clipboard: list[dict[str, Any]] = []
        self._history = UndoHistory(self._settings.history_depth)
        self._edit: _PendingEdit | None = None
        self._drawing: ZoneRecord | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def scene_id(self) -> str:
        return self._scene_id

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def min_distance(self) -> float:
        return self._settings.min_distance

    @property
    def zones(self) -> list[ZoneRecord]:
        """All zones in insertion order."""
        return list(self._zones.values())

    @property
    def history_size(self) -> int:
        return len(self._history)

    @property
    def edit_state(self) -> EditState:
        return EditState.DRAFTING if self._edit is not None else EditState.IDLE

    @property
    def drawing(self) -> ZoneRecord | None:
        """The volatile zone being drawn, if any."""
        return self._drawing

    @property
    def clipboard_size(self) -> int:
        return len(self._clipboard)

    def get(self, zone_id: str) -> ZoneRecord | None:
        return self._zones.get(zone_id)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> list[ZoneRecord]:
        """Replace the collection with the zones held by the store.

        Selection, clipboard state of the gesture and undo history are
        reset.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        records = await self._store.load_all(self._scene_id)
        self._zones = {record.id: record for record in records}
        self._selected.clear()
        self._history.clear()
        self._edit = None
        self._drawing = None
        logger.info("Loaded %d zone(s) for scene %s", len(records), self._scene_id)
        return self.zones

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(
        self,
        records: Sequence[ZoneRecord | dict[str, Any]],
        force_id: bool = False,
        control: bool = False,
        store_history: bool = True,
        positions: Sequence[int] | None = None,
    ) -> list[ZoneRecord]:
        """Create zones from records or attribute maps.

        Every input gets a fresh random id unless *force_id* is set and
        the input carries one.  The new records are normalised, added to
        the collection and then persisted concurrently.

        Args:
            records: Zone records (their id is ignored unless forced) or
                plain attribute maps as produced by ``to_dict``.
            force_id: Keep the id supplied with each input.
            control: Add the created zones to the selection.
            store_history: Record an undo entry deleting the zones.
            positions: Collection index of each record.  Undo uses it to
                put deleted zones back where they were, which keeps the
                stacking order of equal ``z_order`` zones.  By default
                new zones are appended.

        Returns:
            The created records, in input order.

        Raises:
            GeometryInvalidError: If an input has fewer vertices than
                ``Settings.min_vertices``.  Nothing is created then.
            ValueError: If a forced id is already in use, or *positions*
                does not match *records*.
            PersistenceError: If a store write failed.  The records stay
                in the collection.
        """
        if positions is not None and len(positions) != len(records):
            raise ValueError("Need one position per record")
        created: list[ZoneRecord] = []
        for item in records:
            data = item.to_dict() if isinstance(item, ZoneRecord) else dict(item)
            zone_id = str(data.get("id") or "") if force_id else ""
            zone_id = zone_id or _new_zone_id()
            if zone_id in self._zones or any(r.id == zone_id for r in created):
                raise ValueError(f"Zone id '{zone_id}' is already in use")
            data.setdefault("kind", self._settings.default_kind)
            data["id"] = zone_id
            record = ZoneRecord.from_dict(data)
            if len(record.vertices) < self._settings.min_vertices:
                raise GeometryInvalidError(
                    f"A zone needs at least {self._settings.min_vertices} vertices, "
                    f"got {len(record.vertices)}"
                )
            record.normalize()
            created.append(record)

        if positions is None:
            for record in created:
                self._zones[record.id] = record
        else:
            self._insert_at(created, positions)
        if control:
            for record in created:
                self._selected[record.id] = None

        if store_history and created:
            self._history.push(HistoryAction.DELETE, [record.id for record in created])

        logger.info("Created %d zone(s) in scene %s", len(created), self._scene_id)
        await self._save_all(created)
        return created

    async def update(
        self,
        patches: Sequence[dict[str, Any]],
        store_history: bool = True,
    ) -> list[ZoneRecord]:
        """Apply field patches to existing zones.

        Each patch is a dict with an ``"id"`` and any number of schema
        fields.  Values must already have schema types (see
        ``scenezone.models.zone.cast_fields``).  Patches for unknown ids
        are skipped.  All patches are type-checked before any record is
        touched.

        The values a patched field held before the update are collected
        into one undo entry for the whole batch.  When any geometry
        field is patched, every geometry field is captured, because
        normalisation may move the frame.

        A patch that changes the vertices must leave a valid polygon
        (at least ``Settings.min_vertices`` vertices, simple, vertex
        clearance respected).  Otherwise that zone is left exactly as
        it was and dropped from the batch.

        Args:
            patches: Field patches keyed by ``"id"``.
            store_history: Record an undo entry restoring the old values.

        Returns:
            The updated records.

        Raises:
            SchemaTypeMismatchError: If a value has the wrong type.
            ValueError: If a value is out of range.
            PersistenceError: If a store write failed.  The in-memory
                update is kept.
        """
        matched: list[tuple[ZoneRecord, dict[str, Any]]] = []
        for patch in patches:
            record = self._zones.get(str(patch.get("id", "")))
            if record is None:
                logger.warning("Skipping update for unknown zone %r", patch.get("id"))
                continue
            fields = {k: v for k, v in patch.items() if k in ZONE_SCHEMA}
            for name, value in fields.items():
                ZONE_SCHEMA[name].check(name, value)
            matched.append((record, fields))

        inverse: list[dict[str, Any]] = []
        updated: list[ZoneRecord] = []
        for record, fields in matched:
            captured = set(fields)
            if captured & set(GEOMETRY_FIELDS):
                captured |= set(GEOMETRY_FIELDS)
            before = {"id": record.id}
            before.update({name: record.get(name) for name in ZONE_SCHEMA if name in captured})
            reshaped = "vertices" in fields and fields["vertices"] != record.vertices
            snapshot = record.snapshot()
            for name, value in fields.items():
                record.set(name, value)
            record.normalize()
            if reshaped and not self._valid_shape(record):
                record.restore(snapshot)
                logger.warning("Skipping update of zone %s: invalid polygon shape", record.id)
                continue
            inverse.append(before)
            updated.append(record)

        if store_history and inverse:
            self._history.push(HistoryAction.UPDATE, inverse)

        logger.debug("Updated %d zone(s) in scene %s", len(updated), self._scene_id)
        await self._save_all(updated)
        return updated

    async def delete(
        self,
        records: Iterable[ZoneRecord | str],
        store_history: bool = True,
    ) -> list[str]:
        """Remove zones from the collection and the store.

        Args:
            records: Zone records or ids.  Unknown ids are skipped.
            store_history: Record an undo entry re-creating the zones.

        Returns:
            The ids that were removed.

        Raises:
            PersistenceError: If a store delete failed.  The zones stay
                removed from the collection.
        """
        doomed: list[ZoneRecord] = []
        for item in records:
            zone_id = item.id if isinstance(item, ZoneRecord) else str(item)
            record = self._zones.get(zone_id)
            if record is not None and record not in doomed:
                doomed.append(record)

        if store_history and doomed:
            order = list(self._zones)
            self._history.push(
                HistoryAction.CREATE,
                [record.to_dict() for record in doomed],
                positions=[order.index(record.id) for record in doomed],
            )

        deleted_ids = [record.id for record in doomed]
        for record in doomed:
            del self._zones[record.id]
            self._selected.pop(record.id, None)

        results = await asyncio.gather(
            *(self._store.delete_one(self._scene_id, zone_id) for zone_id in deleted_ids),
            return_exceptions=True,
        )
        for record in doomed:
            record.clear_id()

        logger.info("Deleted %d zone(s) from scene %s", len(deleted_ids), self._scene_id)
        self._raise_first(results)
        return deleted_ids

    async def delete_all(self) -> list[str]:
        """Remove every zone of the scene.  This cannot be undone.

        Returns:
            The ids the store reported as deleted.
        """
        self._zones.clear()
        self._selected.clear()
        self._history.clear()
        self._edit = None
        deleted = await self._store.delete_all(self._scene_id)
        logger.info("Deleted all zones in scene %s", self._scene_id)
        return deleted

    async def flush(self) -> int:
        """Write every record whose last normalisation asked for a write.

        Records that only hold uncommitted gesture state are skipped.

        Returns:
            The number of records written.
        """
        drafting = set(self._edit.zone_ids) if self._edit is not None else set()
        pending = [
            r for r in self._zones.values() if r.flush_pending and r.id not in drafting
        ]
        await self._save_all(pending)
        return len(pending)

    async def undo(self) -> bool:
        """Revert the most recent recorded operation.

        Returns:
            True if an entry was undone, False when the history is
            empty or a gesture is in progress.
        """
        if self._edit is not None or self._drawing is not None:
            logger.debug("Undo ignored while a gesture is in progress")
            return False
        entry = self._history.pop()
        if entry is None:
            logger.info("No more steps to undo")
            return False

        logger.info("Undoing %s of zone(s) %s", entry.action.value, entry.zone_ids)
        if entry.action is HistoryAction.DELETE:
            await self.delete(entry.data, store_history=False)
        elif entry.action is HistoryAction.CREATE:
            await self.create(
                entry.data,
                force_id=True,
                store_history=False,
                positions=entry.positions or None,
            )
        else:
            await self.update(entry.data, store_history=False)
        return True

    # ------------------------------------------------------------------
    # Vertex operations
    # ------------------------------------------------------------------

    async def insert_vertex(
        self,
        zone_id: str,
        edge_index: int,
        position: tuple[float, float],
    ) -> bool:
        """Insert a vertex on an edge, at the projection of *position*.

        The new vertex inherits the edge's permeability.  An insertion
        that would make the shape invalid is silently skipped.

        Returns:
            True if the vertex was inserted.
        """
        record = self._editable(zone_id)
        if record is None:
            return False
        trial = record.snapshot()
        if not self._insert_on_edge(trial, edge_index, position):
            return False
        await self.update([self._geometry_patch(trial)])
        return True

    async def remove_vertex(self, zone_id: str, index: int) -> bool:
        """Remove a vertex if the remaining shape stays valid.

        Rejections are reported through the ``notify`` callback.

        Returns:
            True if the vertex was removed.
        """
        record = self._editable(zone_id)
        if record is None:
            return False
        if len(record.vertices) <= self._settings.min_vertices:
            self._notify(
                f"A zone needs at least {self._settings.min_vertices} vertices. "
                "Delete the whole zone instead."
            )
            return False
        trial = record.snapshot()
        if not trial.remove_vertex(index, self.min_distance):
            self._notify(
                "Removing this vertex would result in an invalid shape. "
                "Move this or another vertex first."
            )
            return False
        await self.update([self._geometry_patch(trial)])
        return True

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def selected(self) -> list[ZoneRecord]:
        """Selected zones in selection order."""
        return [self._zones[zone_id] for zone_id in self._selected if zone_id in self._zones]

    def select(self, zone_ids: Iterable[str], release_others: bool = True) -> None:
        if release_others:
            self._selected.clear()
        for zone_id in zone_ids:
            if zone_id in self._zones:
                self._selected[zone_id] = None

    def release(self, zone_ids: Iterable[str]) -> None:
        for zone_id in zone_ids:
            self._selected.pop(zone_id, None)

    def release_all(self) -> int:
        """Clear the selection.

        Returns:
            The number of zones that were released.
        """
        released = len(self._selected)
        self._selected.clear()
        return released

    def control_all(self) -> list[ZoneRecord]:
        """Select every zone, unless a zone is being drawn."""
        if self._drawing is not None:
            return []
        self._selected = dict.fromkeys(self._zones)
        return self.selected

    def selection_query(self, rect: Frame) -> list[ZoneRecord]:
        """Zones whose frame centre lies inside *rect*.  Read only."""
        return [
            record for record in self._zones.values() if rect.contains_point(*record.center)
        ]

    def select_in_rect(self, rect: Frame, release_others: bool = True) -> bool:
        """Select the zones whose frame centre lies inside *rect*.

        Returns:
            True if the selection changed.
        """
        before = list(self._selected)
        self.select([record.id for record in self.selection_query(rect)], release_others)
        return list(self._selected) != before

    # ------------------------------------------------------------------
    # Spatial queries
    # ------------------------------------------------------------------

    def point_query(self, x: float, y: float, only_enabled: bool = True) -> list[ZoneRecord]:
        """Zones covering a scene point.

        Returns:
            Matching zones ordered bottom to top: by ``z_order``, then
            by insertion order.
        """
        hits = [
            record
            for record in self._zones.values()
            if (record.enabled or not only_enabled) and record.covers_point(x, y)
        ]
        hits.sort(key=lambda record: record.z_order)
        return hits

    def ambience_at(self, x: float, y: float, outside: AmbientState) -> AmbientState:
        """Ambient state at a point, filtered by the top-most enabled zone."""
        hits = self.point_query(x, y)
        if not hits:
            return filter_ambience(ZoneKind.OUTSIDE, outside)
        return filter_ambience(hits[-1].kind, outside)

    # ------------------------------------------------------------------
    # Clipboard and keyboard surface
    # ------------------------------------------------------------------

    def copy_selected(self) -> int:
        """Copy the selected zones to the clipboard.

        Returns:
            The number of zones copied.
        """
        self._clipboard = [record.to_dict() for record in self.selected]
        if self._clipboard:
            logger.info("Copied data for %d zone(s)", len(self._clipboard))
        return len(self._clipboard)

    async def paste(
        self,
        position: tuple[float, float],
        bounds: Frame | None = None,
    ) -> list[ZoneRecord]:
        """Create copies of the clipboard zones at *position*.

        The left-most copied zone lands on *position*; the others keep
        their offsets to it.  Copies that would not fit inside *bounds*
        (or the manager's scene bounds) are skipped.  The pasted zones
        become the selection.

        Returns:
            The created records.
        """
        if not self._clipboard:
            return []
        bounds = bounds or self._scene_bounds
        source = sorted(self._clipboard, key=lambda data: data["x"])
        left_x, left_y = source[0]["x"], source[0]["y"]

        to_create: list[dict[str, Any]] = []
        for data in source:
            dest_x = position[0] + (data["x"] - left_x)
            dest_y = position[1] + (data["y"] - left_y)
            target = Frame(dest_x, dest_y, data["width"], data["height"])
            if bounds is not None and not bounds.contains_frame(target):
                continue
            to_create.append({**data, "id": "", "x": dest_x, "y": dest_y})

        if not to_create:
            return []
        self.release_all()
        created = await self.create(to_create, control=True)
        logger.info("Pasted data for %d zone(s)", len(created))
        return created

    async def delete_selected(self) -> list[str]:
        """Delete the selected zones that are not locked."""
        deletable = [record for record in self.selected if not record.locked]
        if not deletable:
            return []
        return await self.delete(deletable)

    # ------------------------------------------------------------------
    # Selection attributes
    # ------------------------------------------------------------------

    async def toggle_enabled_selected(self) -> list[ZoneRecord]:
        """Flip the enabled flag of the selection as one undoable step.

        Every selected zone gets the opposite of the first selected
        zone's flag, so a mixed selection ends up uniform.

        Returns:
            The updated records.
        """
        return await self._toggle_selected("enabled")

    async def toggle_locked_selected(self) -> list[ZoneRecord]:
        """Flip the locked flag of the selection as one undoable step."""
        return await self._toggle_selected("locked")

    async def sort_selected(self, up: bool) -> list[ZoneRecord]:
        """Move the unlocked selected zones to the top or bottom of the stack.

        Raising numbers the zones upwards from the highest ``z_order``
        in the scene plus one; lowering numbers them downwards from the
        lowest minus one.  The moved zones keep their stacking order
        relative to each other.  Recorded as one undo entry.

        Args:
            up: True to raise, False to lower.

        Returns:
            The updated records.
        """
        movable = [record for record in self.selected if not record.locked]
        if not movable:
            return []
        rank = {zone_id: index for index, zone_id in enumerate(self._zones)}
        movable.sort(key=lambda record: (record.z_order, rank[record.id]), reverse=not up)
        levels = [record.z_order for record in self._zones.values()]
        base, step = (max(levels) + 1, 1) if up else (min(levels) - 1, -1)
        return await self.update(
            [{"id": record.id, "z_order": base + step * i} for i, record in enumerate(movable)]
        )

    async def _toggle_selected(self, name: str) -> list[ZoneRecord]:
        selected = self.selected
        if not selected:
            return []
        value = not selected[0].get(name)
        return await self.update([{"id": record.id, name: value} for record in selected])

    # ------------------------------------------------------------------
    # Edit gestures
    # ------------------------------------------------------------------

    def begin_edit(
        self,
        zone_ids: Sequence[str],
        target: EditTarget,
        origin: tuple[float, float],
        handle_index: int | None = None,
    ) -> bool:
        """Start a drag gesture and enter ``DRAFTING``.

        Locked and unknown zones are ignored.  ``VERTEX`` and ``EDGE``
        gestures need exactly one zone and a *handle_index*.

        Returns:
            True if the gesture started, False if nothing is editable
            (the manager stays ``IDLE``).

        Raises:
            EditStateError: If a gesture or a drawing is in progress.
            ValueError: If *handle_index* is missing or out of range.
        """
        if self._edit is not None or self._drawing is not None:
            raise EditStateError("Another gesture is already in progress")

        records = [r for r in (self._editable(zid) for zid in zone_ids) if r is not None]
        if not records:
            return False

        if target in (EditTarget.VERTEX, EditTarget.EDGE):
            if len(records) != 1:
                raise ValueError(f"{target.value} edits need exactly one zone")
            if handle_index is None or not -len(records[0].vertices) <= handle_index < len(
                records[0].vertices
            ):
                raise ValueError(f"Invalid handle index {handle_index!r}")

        pending = _PendingEdit(
            target=target,
            zone_ids=[record.id for record in records],
            handle_index=handle_index,
            snapshots={record.id: record.snapshot() for record in records},
        )
        if target is EditTarget.FRAME:
            pending.frame = Frame.enclosing([record.frame for record in records])
        if target is EditTarget.EDGE:
            record = records[0]
            if not self._insert_on_edge(record, handle_index, origin):
                record.restore(pending.snapshots[record.id])
                return False
            pending.handle_index = (handle_index % (len(record.vertices) - 1)) + 1

        self._edit = pending
        logger.debug("Began %s edit of %s", target.value, pending.zone_ids)
        return True

    def continue_edit(self, event: PointerEvent) -> bool:
        """Apply one pointer move of the current gesture in memory.

        Invalid shapes are silently ignored; the zones keep their last
        valid state.  Nothing is persisted.

        Returns:
            True if at least one zone changed.
        """
        pending = self._edit
        if pending is None:
            return False

        if pending.target in (EditTarget.VERTEX, EditTarget.EDGE):
            record = self._zones.get(pending.zone_ids[0])
            if record is None:
                return False
            moved = record.move_vertex(
                pending.handle_index, event.destination, self.min_distance
            )
            if moved:
                record.normalize(persist=False)
            return moved

        if pending.target is EditTarget.MOVE:
            return self._continue_move(pending, event)
        return self._continue_frame(pending, event)

    async def commit_edit(self, event: PointerEvent | None = None) -> EditState:
        """Finish the gesture and persist the result.

        The final shapes go through ``update`` so the undo entry holds
        the shapes from before the gesture.

        Args:
            event: Optional last pointer sample (the drop position).

        Returns:
            ``COMMITTED``, or ``IDLE`` if no gesture was pending.

        Raises:
            PersistenceError: If a store write failed.  The gesture is
                over either way.
        """
        pending = self._edit
        if pending is None:
            return EditState.IDLE
        if event is not None:
            self.continue_edit(event)
        self._edit = None

        patches: list[dict[str, Any]] = []
        for zone_id in pending.zone_ids:
            record = self._zones.get(zone_id)
            if record is None:
                continue
            final = record.snapshot()
            record.restore(pending.snapshots[zone_id])
            if [final.get(n) for n in GEOMETRY_FIELDS] != [record.get(n) for n in GEOMETRY_FIELDS]:
                patches.append(self._geometry_patch(final))

        logger.debug("Committed %s edit of %s", pending.target.value, pending.zone_ids)
        if patches:
            await self.update(patches)
        return EditState.COMMITTED

    def cancel_edit(self) -> EditState:
        """Abort the gesture and restore the pre-gesture shapes.

        Returns:
            ``CANCELLED``, or ``IDLE`` if no gesture was pending.
        """
        pending = self._edit
        if pending is None:
            return EditState.IDLE
        self._edit = None
        for zone_id, snapshot in pending.snapshots.items():
            record = self._zones.get(zone_id)
            if record is not None:
                record.restore(snapshot)
        logger.debug("Cancelled %s edit of %s", pending.target.value, pending.zone_ids)
        return EditState.CANCELLED

    def _continue_move(self, pending: _PendingEdit, event: PointerEvent) -> bool:
        dx, dy = event.delta
        changed = False
        for zone_id in pending.zone_ids:
            record = self._zones.get(zone_id)
            if record is None:
                continue
            start = pending.snapshots[zone_id].frame
            target = Frame(start.x + dx, start.y + dy, start.width, start.height)
            if self._scene_bounds is not None and not self._scene_bounds.contains_frame(target):
                continue
            record.set("x", target.x)
            record.set("y", target.y)
            changed = True
        return changed

    def _continue_frame(self, pending: _PendingEdit, event: PointerEvent) -> bool:
        source = pending.frame
        if source is None:
            return False
        cx, cy = event.destination
        # No inversion beyond the frame's top-left corner.
        if cx < source.x or cy < source.y:
            return False

        if event.has(Modifier.SHIFT) and source.width > 0 and source.height > 0:
            ratio = source.width / source.height
            new_w = cx - source.x
            new_h = new_w / ratio
            if new_h > cy - source.y:
                new_h = cy - source.y
                new_w = new_h * ratio
            cx, cy = source.x + new_w, source.y + new_h

        if event.has(Modifier.ALT):
            if cx < source.x + source.width / 2 or cy < source.y + source.height / 2:
                return False
            left = 2 * source.x + source.width - cx
            top = 2 * source.y + source.height - cy
            target = Frame(left, top, cx - left, cy - top)
        else:
            target = Frame(source.x, source.y, cx - source.x, cy - source.y)

        changed = False
        for zone_id in pending.zone_ids:
            record = self._zones.get(zone_id)
            if record is None:
                continue
            if record.rescale(pending.snapshots[zone_id], source, target, self.min_distance):
                changed = True
        return changed

    # ------------------------------------------------------------------
    # Drawing new zones
    # ------------------------------------------------------------------

    def start_drawing(self, origin: tuple[float, float]) -> ZoneRecord:
        """Begin drawing a new volatile zone at *origin*.

        The volatile record starts with two coincident vertices; the
        second one follows the pointer.

        Raises:
            EditStateError: If a gesture or a drawing is in progress.
        """
        if self._edit is not None or self._drawing is not None:
            raise EditStateError("Another gesture is already in progress")
        record = ZoneRecord(
            {
                "x": float(origin[0]),
                "y": float(origin[1]),
                "vertices": [Vertex(0.0, 0.0), Vertex(0.0, 0.0)],
                "kind": ZoneKind(self._settings.default_kind),
            }
        )
        self._drawing = record
        return record

    def draw_move(self, position: tuple[float, float]) -> bool:
        """Move the trailing vertex of the drawn zone.  Never persists."""
        if self._drawing is None:
            return False
        record = self._drawing
        moved = record.move_vertex(-1, position, self.min_distance)
        if moved:
            record.normalize(persist=False)
        return moved

    def draw_drop(self, position: tuple[float, float]) -> None:
        """Fix the trailing vertex and start a new one at *position*."""
        if self._drawing is None:
            return
        record = self._drawing
        record.insert_vertex(len(record.vertices) - 1, position)
        record.normalize(persist=False)

    async def finish_drawing(self) -> ZoneRecord | None:
        """Commit the drawn zone.

        The trailing vertex (the one following the pointer) is dropped.
        Shapes with too few vertices or an invalid outline are
        discarded with a notice.

        Returns:
            The created durable record, or None if discarded.
        """
        drawing = self._drawing
        if drawing is None:
            return None
        self._drawing = None

        data = drawing.to_dict()
        data["vertices"] = data["vertices"][:-1]
        trial = ZoneRecord.from_dict(data)
        if len(trial.vertices) < self._settings.min_vertices:
            self._notify(f"A zone needs at least {self._settings.min_vertices} vertices.")
            return None
        trial.normalize(persist=False)
        if not trial.is_valid(self.min_distance):
            self._notify("The drawn shape crosses itself and was discarded.")
            return None

        self.release_all()
        [created] = await self.create([trial], control=True)
        return created

    def cancel_drawing(self) -> None:
        self._drawing = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _editable(self, zone_id: str) -> ZoneRecord | None:
        record = self._zones.get(zone_id)
        if record is None:
            logger.debug("Zone %s not found", zone_id)
            return None
        if record.locked:
            logger.debug("Zone %s is locked", zone_id)
            return None
        return record

    def _insert_on_edge(
        self,
        record: ZoneRecord,
        edge_index: int,
        position: Sequence[float],
    ) -> bool:
        vertices = record.vertices
        start = vertices[edge_index]
        end = vertices[(edge_index + 1) % len(vertices)]
        ox, oy = record.get("x"), record.get("y")
        px, py = project_onto_line(
            (position[0] - ox, position[1] - oy), start, end, clamp=True
        )
        before = record.snapshot()
        record.insert_vertex(edge_index % len(vertices), (px + ox, py + oy), start.permeable)
        if not record.is_valid(self.min_distance):
            record.restore(before)
            logger.debug("Rejected vertex insertion on zone %s", record.id)
            return False
        record.normalize(persist=False)
        return True

    def _valid_shape(self, record: ZoneRecord) -> bool:
        return len(record.vertices) >= self._settings.min_vertices and record.is_valid(
            self.min_distance
        )

    def _insert_at(self, records: Sequence[ZoneRecord], positions: Sequence[int]) -> None:
        order = list(self._zones.values())
        # Ascending original index rebuilds the order the zones were removed from.
        for position, record in sorted(zip(positions, records), key=lambda pair: pair[0]):
            order.insert(min(position, len(order)), record)
        self._zones = {record.id: record for record in order}

    @staticmethod
    def _geometry_patch(record: ZoneRecord) -> dict[str, Any]:
        patch: dict[str, Any] = {"id": record.id}
        patch.update({name: record.get(name) for name in GEOMETRY_FIELDS})
        return patch

    async def _save(self, record: ZoneRecord) -> None:
        if record.is_volatile or not record.flush_pending:
            return
        try:
            await self._store.save_one(self._scene_id, record)
        except PersistenceError as exc:
            logger.warning("Could not persist zone %s: %s", record.id, exc)
            raise
        record.mark_persisted()

    async def _save_all(self, records: Sequence[ZoneRecord]) -> None:
        results = await asyncio.gather(
            *(self._save(record) for record in records),
            return_exceptions=True,
        )
        self._raise_first(results)

    @staticmethod
    def _raise_first(results: Sequence[Any]) -> None:
        for result in results:
            if isinstance(result, BaseException):
                raise result

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._zones)

    def __contains__(self, zone_id: object) -> bool:
        if not isinstance(zone_id, str):
            return False
        return zone_id in self._zones

    def __repr__(self) -> str:
        return (
            f"ZoneManager(scene={self._scene_id!r}, zones={len(self._zones)}, "
            f"history={len(self._history)})"
        )
