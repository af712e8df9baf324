"""Tests for scenezone.core.zone_manager.ZoneManager.

Covers CRUD with bounded undo, optimistic persistence, selection,
spatial queries, clipboard, vertex operations, the drag edit state
machine and the drawing session.  Coroutines are driven with
``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from scenezone.config.settings import Settings
from scenezone.core.ambience import AmbientState
from scenezone.core.geometry import Vertex
from scenezone.core.zone_manager import (
    EditState,
    EditStateError,
    EditTarget,
    Modifier,
    PointerEvent,
    ZoneManager,
)
from scenezone.core.zone_store import InMemoryZoneStore, PersistenceError
from scenezone.models.zone import (
    Frame,
    GeometryInvalidError,
    SchemaTypeMismatchError,
    ZoneKind,
    ZoneRecord,
)

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

# grid_size 20 gives a minimum vertex distance of 10.
_SETTINGS = Settings(grid_size=20.0)

_SQUARE = [(0, 0), (100, 0), (100, 100), (0, 100)]
_TRIANGLE = [(0, 0), (100, 0), (50, 100)]


class _FailingStore(InMemoryZoneStore):
    """In-memory store whose writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = True

    async def save_one(self, scene_id: str, record: ZoneRecord) -> None:
        if self.failing:
            raise PersistenceError("store offline", scene_id, record.id)
        await super().save_one(scene_id, record)


def _zone(
    points: list[tuple[float, float]] | None = None,
    x: float = 0.0,
    y: float = 0.0,
    **fields: object,
) -> dict[str, object]:
    """Attribute map for ``ZoneManager.create``."""
    data: dict[str, object] = {
        "x": x,
        "y": y,
        "vertices": [{"x": px, "y": py} for px, py in (points or _SQUARE)],
    }
    data.update(fields)
    return data


def _make_manager(
    store: InMemoryZoneStore | None = None,
    notices: list[str] | None = None,
    scene_bounds: Frame | None = None,
) -> ZoneManager:
    notify = notices.append if notices is not None else None
    return ZoneManager(
        "scene-1",
        store if store is not None else InMemoryZoneStore(),
        _SETTINGS,
        notify=notify,
        scene_bounds=scene_bounds,
    )


def _state(manager: ZoneManager) -> dict[str, dict[str, object]]:
    return {record.id: record.to_dict() for record in manager.zones}


def _drag(origin: tuple[float, float], destination: tuple[float, float], *mods: Modifier) -> PointerEvent:
    return PointerEvent(origin=origin, destination=destination, modifiers=frozenset(mods))


# ------------------------------------------------------------------
# create
# ------------------------------------------------------------------


class TestCreate:
    """Zone creation and its persistence."""

    def test_assigns_random_id_and_persists(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone()]))
        assert len(record.id) == 16
        assert not record.is_volatile
        assert record.persisted
        assert store.documents["scene-1"][record.id]["vertices"][2] == {
            "x": 100.0, "y": 100.0, "permeable": False,
        }

    def test_records_are_normalised(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone([(10, 20), (110, 20), (60, 120)], x=5.0)]))
        assert record.frame.as_tuple() == (15, 20, 100, 100)
        assert record.vertices[0] == Vertex(0, 0)

    def test_default_kind_applied(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        assert record.kind is ZoneKind.OUTSIDE

    def test_explicit_kind_kept(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(kind="roofed")]))
        assert record.kind is ZoneKind.ROOFED

    def test_batch_gets_distinct_ids(self) -> None:
        manager = _make_manager()
        records = asyncio.run(manager.create([_zone(), _zone(x=200.0), _zone(x=400.0)]))
        assert len({r.id for r in records}) == 3
        assert len(manager) == 3
        assert manager.history_size == 1

    def test_source_id_ignored_without_force(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(id="mine")]))
        assert record.id != "mine"

    def test_force_id(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(id="mine")], force_id=True))
        assert record.id == "mine"
        assert "mine" in manager

    def test_duplicate_forced_id_raises(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone(id="mine")], force_id=True))
        with pytest.raises(ValueError, match="mine"):
            asyncio.run(manager.create([_zone(id="mine")], force_id=True))
        assert len(manager) == 1

    def test_too_few_vertices_raises(self) -> None:
        manager = _make_manager()
        with pytest.raises(GeometryInvalidError):
            asyncio.run(manager.create([_zone([(0, 0), (100, 0)])]))
        assert len(manager) == 0
        assert manager.history_size == 0

    def test_control_selects(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()], control=True))
        assert manager.selected == [record]

    def test_create_from_record_clones(self) -> None:
        manager = _make_manager()
        [first] = asyncio.run(manager.create([_zone()]))
        [second] = asyncio.run(manager.create([first]))
        assert second.id != first.id
        assert second.vertices == first.vertices

    def test_create_then_undo_removes(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.undo()) is True
        assert len(manager) == 0
        assert store.documents["scene-1"] == {}


# ------------------------------------------------------------------
# update
# ------------------------------------------------------------------


class TestUpdate:
    """Field patches and their inverse."""

    def test_patch_fields(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        asyncio.run(manager.update([
            {"id": record.id, "kind": ZoneKind.ENCLOSED, "feather": 30.0, "locked": True},
        ]))
        assert record.kind is ZoneKind.ENCLOSED
        assert record.feather == 30.0
        assert record.locked is True
        assert record.persisted

    def test_undo_restores_previous_values(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(feather=10.0)]))
        asyncio.run(manager.update([{"id": record.id, "feather": 90.0}]))
        asyncio.run(manager.undo())
        assert record.feather == 10.0

    def test_batch_is_one_history_entry(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        asyncio.run(manager.update([
            {"id": a.id, "z_order": 2},
            {"id": b.id, "z_order": 5},
        ]))
        assert manager.history_size == 2
        asyncio.run(manager.undo())
        assert (a.z_order, b.z_order) == (0, 0)

    def test_type_mismatch_raises_before_any_write(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        with pytest.raises(SchemaTypeMismatchError):
            asyncio.run(manager.update([
                {"id": a.id, "z_order": 4},
                {"id": b.id, "z_order": "high"},
            ]))
        assert a.z_order == 0
        assert manager.history_size == 1

    def test_unknown_id_skipped(self) -> None:
        manager = _make_manager()
        updated = asyncio.run(manager.update([{"id": "ghost", "feather": 5.0}]))
        assert updated == []
        assert manager.history_size == 0

    def test_geometry_patch_is_normalised(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        vertices = [Vertex(20, 20), Vertex(220, 20), Vertex(120, 120)]
        asyncio.run(manager.update([{"id": record.id, "vertices": vertices}]))
        assert record.frame.as_tuple() == (20, 20, 200, 100)
        assert record.vertices[0] == Vertex(0, 0)

    def test_geometry_undo_restores_frame(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(x=5.0, y=5.0)]))
        before = record.to_dict()
        vertices = [Vertex(20, 20), Vertex(220, 20), Vertex(120, 120)]
        asyncio.run(manager.update([{"id": record.id, "vertices": vertices}]))
        asyncio.run(manager.undo())
        assert record.to_dict() == before

    def test_too_few_vertices_leave_zone_untouched(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone()]))
        before = record.to_dict()
        updated = asyncio.run(manager.update([
            {"id": record.id, "vertices": [Vertex(0, 0), Vertex(10, 10)]},
        ]))
        assert updated == []
        assert record.to_dict() == before
        assert record.persisted
        assert store.documents["scene-1"][record.id] == before
        assert manager.history_size == 1

    def test_self_crossing_patch_skipped_rest_applied(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        bowtie = [Vertex(0, 0), Vertex(100, 100), Vertex(100, 0), Vertex(0, 100)]
        updated = asyncio.run(manager.update([
            {"id": a.id, "vertices": bowtie},
            {"id": b.id, "feather": 40.0},
        ]))
        assert updated == [b]
        assert a.vertices == [Vertex(px, py) for px, py in _SQUARE]
        assert b.feather == 40.0
        asyncio.run(manager.undo())
        assert b.feather == 0.0
        assert a.vertices == [Vertex(px, py) for px, py in _SQUARE]


# ------------------------------------------------------------------
# delete / undo
# ------------------------------------------------------------------


class TestDeleteAndUndo:
    """Deletion, recreation and the bounded history."""

    def test_delete_removes_from_store_and_selection(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone()], control=True))
        zone_id = record.id
        assert asyncio.run(manager.delete([zone_id])) == [zone_id]
        assert zone_id not in manager
        assert manager.selected == []
        assert zone_id not in store.documents["scene-1"]
        assert record.is_volatile

    def test_delete_unknown_id(self) -> None:
        manager = _make_manager()
        assert asyncio.run(manager.delete(["ghost"])) == []
        assert manager.history_size == 0

    def test_undo_delete_recreates_same_id(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone(kind="enclosed", z_order=3)]))
        snapshot = record.to_dict()
        asyncio.run(manager.delete([record]))
        asyncio.run(manager.undo())
        restored = manager.get(snapshot["id"])
        assert restored is not None
        assert restored.to_dict() == snapshot
        assert snapshot["id"] in store.documents["scene-1"]

    def test_undo_round_trip(self) -> None:
        store = InMemoryZoneStore()
        asyncio.run(_make_manager(store).create([_zone(), _zone(x=300.0, kind="roofed")]))
        manager = _make_manager(store)
        asyncio.run(manager.load())
        before = _state(manager)

        async def edit_sequence() -> None:
            first, second = manager.zones
            [third] = await manager.create([_zone(_TRIANGLE, x=600.0)])
            await manager.update([{"id": first.id, "feather": 50.0, "enabled": False}])
            await manager.update([{"id": third.id, "vertices": [
                Vertex(0, 0), Vertex(150, 0), Vertex(150, 80), Vertex(0, 80),
            ]}])
            await manager.delete([second.id])
            await manager.delete([first])
            for _ in range(5):
                assert await manager.undo() is True
            assert await manager.undo() is False

        asyncio.run(edit_sequence())
        assert _state(manager) == before
        assert list(_state(manager)) == list(before)
        assert store.documents["scene-1"] == before

    def test_undo_delete_keeps_stacking_order(self) -> None:
        manager = _make_manager()
        lower, upper = asyncio.run(manager.create([_zone(), _zone()]))
        upper_id = upper.id
        before = [record.id for record in manager.point_query(50, 50)]
        asyncio.run(manager.delete([lower]))
        asyncio.run(manager.undo())
        assert [record.id for record in manager.point_query(50, 50)] == before
        assert manager.point_query(50, 50)[-1].id == upper_id

    def test_undo_multi_delete_restores_positions(self) -> None:
        manager = _make_manager()
        zones = asyncio.run(manager.create([_zone(x=i * 200.0) for i in range(5)]))
        order = [record.id for record in manager.zones]
        asyncio.run(manager.delete([zones[3], zones[0]]))
        asyncio.run(manager.undo())
        assert [record.id for record in manager.zones] == order

    def test_history_is_bounded(self) -> None:
        manager = _make_manager()

        async def scenario() -> int:
            for index in range(12):
                await manager.create([_zone(x=index * 200.0)])
            undone = 0
            while await manager.undo():
                undone += 1
            return undone

        assert asyncio.run(scenario()) == 10
        assert len(manager) == 2

    def test_empty_undo_logs_info(self, caplog: pytest.LogCaptureFixture) -> None:
        manager = _make_manager()
        with caplog.at_level(logging.INFO, logger="scenezone.core.zone_manager"):
            assert asyncio.run(manager.undo()) is False
        assert "No more steps to undo" in caplog.text

    def test_delete_all_clears_history(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        deleted = asyncio.run(manager.delete_all())
        assert len(deleted) == 2
        assert len(manager) == 0
        assert manager.history_size == 0
        assert "scene-1" not in store.documents


# ------------------------------------------------------------------
# Persistence failures
# ------------------------------------------------------------------


class TestPersistenceFailure:
    """Optimistic mutation without rollback."""

    def test_failed_create_keeps_record(self) -> None:
        store = _FailingStore()
        manager = _make_manager(store)
        with pytest.raises(PersistenceError):
            asyncio.run(manager.create([_zone()]))
        [record] = manager.zones
        assert not record.persisted
        assert manager.history_size == 1
        assert store.documents == {}

    def test_flush_after_recovery(self) -> None:
        store = _FailingStore()
        manager = _make_manager(store)
        with pytest.raises(PersistenceError):
            asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        store.failing = False
        assert asyncio.run(manager.flush()) == 2
        assert all(record.persisted for record in manager.zones)
        assert len(store.documents["scene-1"]) == 2

    def test_flush_with_nothing_pending(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.flush()) == 0

    def test_flush_skips_uncommitted_gesture(self) -> None:
        store = _FailingStore()
        manager = _make_manager(store)
        with pytest.raises(PersistenceError):
            asyncio.run(manager.create([_zone()]))
        [record] = manager.zones
        store.failing = False
        manager.begin_edit([record.id], EditTarget.MOVE, (0, 0))
        manager.continue_edit(_drag((0, 0), (40, 0)))
        assert asyncio.run(manager.flush()) == 0
        manager.cancel_edit()
        assert asyncio.run(manager.flush()) == 1
        assert store.documents["scene-1"][record.id]["x"] == 0.0

    def test_next_write_carries_accumulated_state(self) -> None:
        store = _FailingStore()
        store.failing = False
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone()]))
        store.failing = True
        with pytest.raises(PersistenceError):
            asyncio.run(manager.update([{"id": record.id, "feather": 20.0}]))
        assert record.feather == 20.0
        store.failing = False
        asyncio.run(manager.update([{"id": record.id, "z_order": 1}]))
        saved = store.documents["scene-1"][record.id]
        assert (saved["feather"], saved["z_order"]) == (20.0, 1)

    def test_load_replaces_collection(self) -> None:
        store = InMemoryZoneStore()
        writer = _make_manager(store)
        asyncio.run(writer.create([_zone(), _zone(x=300.0)]))
        reader = _make_manager(store)
        loaded = asyncio.run(reader.load())
        assert {r.id for r in loaded} == {r.id for r in writer.zones}
        assert all(r.persisted for r in loaded)
        assert reader.history_size == 0


# ------------------------------------------------------------------
# Selection and queries
# ------------------------------------------------------------------


class TestSelectionAndQueries:
    """Selection by rectangle and point queries."""

    def test_select_in_rect_uses_centre(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        assert manager.select_in_rect(Frame(0, 0, 60, 60)) is True
        assert manager.selected == [a]
        assert manager.select_in_rect(Frame(0, 0, 40, 40)) is True
        assert manager.selected == []

    def test_select_in_rect_keeps_others(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        manager.select([a.id])
        manager.select_in_rect(Frame(300, 0, 100, 100), release_others=False)
        assert manager.selected == [a, b]

    def test_selection_query_is_read_only(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone()]))
        assert len(manager.selection_query(Frame(0, 0, 100, 100))) == 1
        assert manager.selected == []

    def test_release_and_control_all(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        assert manager.control_all() == [a, b]
        manager.release([a.id])
        assert manager.selected == [b]
        assert manager.release_all() == 1

    def test_point_query_orders_by_z_then_insertion(self) -> None:
        manager = _make_manager()
        top, low, middle = asyncio.run(manager.create([
            _zone(z_order=2), _zone(z_order=0), _zone(z_order=2, x=50.0),
        ]))
        assert manager.point_query(60, 50) == [low, top, middle]

    def test_point_query_excludes_disabled(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(enabled=False)]))
        assert manager.point_query(50, 50) == []
        assert manager.point_query(50, 50, only_enabled=False) == [record]

    def test_point_query_respects_polygon(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone(_TRIANGLE)]))
        assert manager.point_query(50, 50) != []
        assert manager.point_query(5, 95) == []

    def test_ambience_at_uses_top_zone(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([
            _zone(kind="roofed", z_order=0),
            _zone(kind="enclosed", z_order=1),
        ]))
        assert manager.ambience_at(50, 50, AmbientState()).condition is ZoneKind.ENCLOSED
        assert manager.ambience_at(500, 500, AmbientState()).condition is ZoneKind.OUTSIDE


# ------------------------------------------------------------------
# Clipboard and keyboard surface
# ------------------------------------------------------------------


class TestClipboard:
    """Copy, paste and delete-selected."""

    def test_paste_relative_to_leftmost(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone(x=200.0, y=50.0), _zone(x=0.0, y=0.0)]))
        manager.control_all()
        assert manager.copy_selected() == 2
        pasted = asyncio.run(manager.paste((1000.0, 1000.0)))
        frames = sorted(r.frame.as_tuple() for r in pasted)
        assert frames == [(1000, 1000, 100, 100), (1200, 1050, 100, 100)]
        assert manager.selected == pasted
        assert len(manager) == 4

    def test_paste_skips_out_of_bounds(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone(x=0.0), _zone(x=200.0)]))
        manager.control_all()
        manager.copy_selected()
        pasted = asyncio.run(manager.paste((100.0, 0.0), bounds=Frame(0, 0, 250, 250)))
        assert [r.frame.x for r in pasted] == [100]

    def test_paste_with_empty_clipboard(self) -> None:
        manager = _make_manager()
        assert asyncio.run(manager.paste((0.0, 0.0))) == []

    def test_paste_is_undoable(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone()], control=True))
        manager.copy_selected()
        asyncio.run(manager.paste((500.0, 500.0)))
        asyncio.run(manager.undo())
        assert len(manager) == 1

    def test_delete_selected_skips_locked(self) -> None:
        manager = _make_manager()
        free, locked = asyncio.run(manager.create([_zone(), _zone(x=300.0, locked=True)]))
        manager.control_all()
        assert asyncio.run(manager.delete_selected()) == [free.id]
        assert manager.zones == [locked]


# ------------------------------------------------------------------
# Vertex operations
# ------------------------------------------------------------------


class TestVertexOperations:
    """Insert and remove with notices."""

    def test_insert_vertex_projects_onto_edge(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.insert_vertex(record.id, 0, (40.0, 30.0))) is True
        assert record.vertices[1] == Vertex(40, 0)
        assert record.persisted

    def test_insert_too_close_is_silently_skipped(self) -> None:
        notices: list[str] = []
        manager = _make_manager(notices=notices)
        [record] = asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.insert_vertex(record.id, 0, (3.0, 0.0))) is False
        assert len(record.vertices) == 4
        assert notices == []

    def test_remove_from_triangle_notifies(self) -> None:
        notices: list[str] = []
        manager = _make_manager(notices=notices)
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        assert asyncio.run(manager.remove_vertex(record.id, 0)) is False
        assert "at least 3" in notices[0]
        assert len(record.vertices) == 3

    def test_remove_invalid_shape_notifies(self) -> None:
        notices: list[str] = []
        manager = _make_manager(notices=notices)
        [record] = asyncio.run(manager.create([
            _zone([(0, 0), (200, 0), (200, 200), (100, 50), (0, 200)]),
        ]))
        before = record.to_dict()
        assert asyncio.run(manager.remove_vertex(record.id, 1)) is False
        assert "invalid shape" in notices[0]
        assert record.to_dict() == before

    def test_remove_vertex_and_undo(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([
            _zone([(0, 0), (100, 0), (100, 100), (50, 150), (0, 100)]),
        ]))
        assert asyncio.run(manager.remove_vertex(record.id, 3)) is True
        assert record.frame.height == 100
        asyncio.run(manager.undo())
        assert len(record.vertices) == 5
        assert record.frame.height == 150

    def test_locked_zone_is_not_edited(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(locked=True)]))
        assert asyncio.run(manager.insert_vertex(record.id, 0, (50.0, 0.0))) is False

    def test_insert_past_edge_end_stays_on_edge(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.insert_vertex(record.id, 0, (130.0, 20.0))) is False
        assert record.vertices == [Vertex(px, py) for px, py in _SQUARE]
        assert manager.history_size == 1


# ------------------------------------------------------------------
# Selection attributes
# ------------------------------------------------------------------


class TestSelectionAttributes:
    """Enabled and locked toggles and z-order sorting of the selection."""

    def test_toggle_enabled_follows_first_selected(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0, enabled=False)]))
        manager.select([a.id, b.id])
        asyncio.run(manager.toggle_enabled_selected())
        assert (a.enabled, b.enabled) == (False, False)
        assert manager.history_size == 2
        asyncio.run(manager.undo())
        assert (a.enabled, b.enabled) == (True, False)

    def test_toggle_locked_twice(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        manager.select([a.id, b.id])
        asyncio.run(manager.toggle_locked_selected())
        assert a.locked and b.locked
        asyncio.run(manager.toggle_locked_selected())
        assert not a.locked and not b.locked

    def test_toggle_without_selection(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone()]))
        assert asyncio.run(manager.toggle_enabled_selected()) == []
        assert manager.history_size == 1

    def test_sort_up_skips_locked(self) -> None:
        manager = _make_manager()
        a, b, c, d = asyncio.run(manager.create([
            _zone(z_order=2), _zone(), _zone(), _zone(z_order=7, locked=True),
        ]))
        manager.select([b.id, c.id, d.id])
        asyncio.run(manager.sort_selected(up=True))
        assert (a.z_order, b.z_order, c.z_order, d.z_order) == (2, 8, 9, 7)
        assert manager.point_query(50, 50)[-1] is c

    def test_sort_down_keeps_relative_order(self) -> None:
        manager = _make_manager()
        a, b, c, d = asyncio.run(manager.create([
            _zone(z_order=2), _zone(z_order=3), _zone(z_order=3), _zone(z_order=-1, locked=True),
        ]))
        manager.select([b.id, c.id, d.id])
        asyncio.run(manager.sort_selected(up=False))
        assert (a.z_order, b.z_order, c.z_order, d.z_order) == (2, -3, -2, -1)
        assert [r.id for r in manager.point_query(50, 50)] == [b.id, c.id, d.id, a.id]
        asyncio.run(manager.undo())
        assert (b.z_order, c.z_order) == (3, 3)

    def test_sort_all_locked_is_noop(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(locked=True)]))
        manager.select([record.id])
        assert asyncio.run(manager.sort_selected(up=True)) == []
        assert manager.history_size == 1


# ------------------------------------------------------------------
# Edit state machine
# ------------------------------------------------------------------


class TestEditGestures:
    """begin / continue / commit / cancel."""

    def test_vertex_drag_persists_only_on_commit(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        assert manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        assert manager.edit_state is EditState.DRAFTING
        assert manager.continue_edit(_drag((50, 100), (50, 60))) is True
        assert record.frame.height == 60
        assert store.documents["scene-1"][record.id]["height"] == 100.0
        assert asyncio.run(manager.commit_edit()) is EditState.COMMITTED
        assert manager.edit_state is EditState.IDLE
        assert store.documents["scene-1"][record.id]["height"] == 60.0

    def test_commit_is_undoable_to_pre_drag_state(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        before = record.to_dict()
        manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        manager.continue_edit(_drag((50, 100), (50, 70)))
        manager.continue_edit(_drag((50, 100), (80, 40)))
        asyncio.run(manager.commit_edit())
        assert manager.history_size == 2
        asyncio.run(manager.undo())
        assert record.to_dict() == before

    def test_apex_too_close_is_ignored(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        assert manager.continue_edit(_drag((50, 100), (50, 5))) is False
        assert record.frame.height == 100

    def test_cancel_restores_snapshot(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        before = record.to_dict()
        manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        manager.continue_edit(_drag((50, 100), (50, 60)))
        assert manager.cancel_edit() is EditState.CANCELLED
        assert record.to_dict() == before
        assert record.persisted
        assert manager.history_size == 1

    def test_commit_without_change_records_nothing(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        asyncio.run(manager.commit_edit())
        assert manager.history_size == 1

    def test_commit_with_drop_event(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(_TRIANGLE)]))
        manager.begin_edit([record.id], EditTarget.VERTEX, (50, 100), handle_index=2)
        asyncio.run(manager.commit_edit(_drag((50, 100), (50, 120))))
        assert record.frame.height == 120

    def test_second_begin_raises(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.MOVE, (0, 0))
        with pytest.raises(EditStateError):
            manager.begin_edit([record.id], EditTarget.MOVE, (0, 0))

    def test_locked_zones_are_ignored(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(locked=True)]))
        assert manager.begin_edit([record.id], EditTarget.MOVE, (0, 0)) is False
        assert manager.edit_state is EditState.IDLE

    def test_vertex_edit_needs_handle(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        with pytest.raises(ValueError):
            manager.begin_edit([record.id], EditTarget.VERTEX, (0, 0))

    def test_continue_without_gesture_is_ignored(self) -> None:
        manager = _make_manager()
        assert manager.continue_edit(_drag((0, 0), (5, 5))) is False
        assert manager.cancel_edit() is EditState.IDLE

    def test_undo_blocked_while_drafting(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.MOVE, (0, 0))
        assert asyncio.run(manager.undo()) is False
        assert len(manager) == 1

    def test_move_translates_selection(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=300.0)]))
        manager.begin_edit([a.id, b.id], EditTarget.MOVE, (10, 10))
        manager.continue_edit(_drag((10, 10), (20, 20)))
        manager.continue_edit(_drag((10, 10), (60, 35)))
        asyncio.run(manager.commit_edit())
        assert a.frame.as_tuple() == (50, 25, 100, 100)
        assert b.frame.as_tuple() == (350, 25, 100, 100)
        asyncio.run(manager.undo())
        assert a.frame.x == 0 and b.frame.x == 300

    def test_move_stays_inside_scene(self) -> None:
        manager = _make_manager(scene_bounds=Frame(0, 0, 500, 500))
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.MOVE, (0, 0))
        assert manager.continue_edit(_drag((0, 0), (450, 0))) is False
        assert manager.continue_edit(_drag((0, 0), (400, 0))) is True
        assert record.frame.x == 400

    def test_frame_resize(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.FRAME, (100, 100))
        assert manager.continue_edit(_drag((100, 100), (200, 50))) is True
        asyncio.run(manager.commit_edit())
        assert record.frame.as_tuple() == (0, 0, 200, 50)
        assert record.vertices[2] == Vertex(200, 50)

    def test_frame_resize_cannot_invert(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone(x=100.0, y=100.0)]))
        manager.begin_edit([record.id], EditTarget.FRAME, (200, 200))
        assert manager.continue_edit(_drag((200, 200), (50, 150))) is False
        assert record.frame.as_tuple() == (100, 100, 100, 100)

    def test_frame_resize_around_centre(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.FRAME, (100, 100))
        assert manager.continue_edit(_drag((100, 100), (150, 150), Modifier.ALT))
        assert record.frame.as_tuple() == (-50, -50, 200, 200)
        assert not manager.continue_edit(_drag((100, 100), (40, 40), Modifier.ALT))

    def test_frame_resize_keeps_aspect_ratio(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.FRAME, (100, 100))
        manager.continue_edit(_drag((100, 100), (200, 50), Modifier.SHIFT))
        assert record.frame.as_tuple() == (0, 0, 50, 50)

    def test_frame_resize_of_several_zones(self) -> None:
        manager = _make_manager()
        a, b = asyncio.run(manager.create([_zone(), _zone(x=100.0)]))
        manager.begin_edit([a.id, b.id], EditTarget.FRAME, (200, 100))
        manager.continue_edit(_drag((200, 100), (400, 100)))
        asyncio.run(manager.commit_edit())
        assert a.frame.as_tuple() == (0, 0, 200, 100)
        assert b.frame.as_tuple() == (200, 0, 200, 100)

    def test_edge_drag_inserts_vertex(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        assert manager.begin_edit([record.id], EditTarget.EDGE, (50, 0), handle_index=0)
        assert len(record.vertices) == 5
        manager.continue_edit(_drag((50, 0), (50, -30)))
        asyncio.run(manager.commit_edit())
        assert record.frame.as_tuple() == (0, -30, 100, 130)
        assert record.vertices[1] == Vertex(50, 0)
        asyncio.run(manager.undo())
        assert len(record.vertices) == 4
        assert record.frame.as_tuple() == (0, 0, 100, 100)

    def test_cancelled_edge_drag_drops_vertex(self) -> None:
        manager = _make_manager()
        [record] = asyncio.run(manager.create([_zone()]))
        manager.begin_edit([record.id], EditTarget.EDGE, (50, 0), handle_index=0)
        manager.cancel_edit()
        assert len(record.vertices) == 4


# ------------------------------------------------------------------
# Drawing session
# ------------------------------------------------------------------


class TestDrawing:
    """Volatile records drawn point by point."""

    def _draw(self, manager: ZoneManager, points: list[tuple[float, float]]) -> ZoneRecord:
        drawing = manager.start_drawing(points[0])
        for point in points[1:]:
            manager.draw_move(point)
            manager.draw_drop(point)
        return drawing

    def test_draw_square(self) -> None:
        store = InMemoryZoneStore()
        manager = _make_manager(store)
        drawing = self._draw(manager, [(10, 10), (110, 10), (110, 110), (10, 110)])
        assert drawing.is_volatile
        assert manager.drawing is drawing
        assert store.documents == {}
        created = asyncio.run(manager.finish_drawing())
        assert created is not None
        assert created.frame.as_tuple() == (10, 10, 100, 100)
        assert len(created.vertices) == 4
        assert manager.selected == [created]
        assert manager.drawing is None
        assert created.id in store.documents["scene-1"]

    def test_too_few_vertices_discarded(self) -> None:
        notices: list[str] = []
        manager = _make_manager(notices=notices)
        self._draw(manager, [(0, 0), (100, 0)])
        assert asyncio.run(manager.finish_drawing()) is None
        assert len(manager) == 0
        assert notices

    def test_start_while_drawing_raises(self) -> None:
        manager = _make_manager()
        manager.start_drawing((0, 0))
        with pytest.raises(EditStateError):
            manager.start_drawing((5, 5))

    def test_cancel_drawing(self) -> None:
        manager = _make_manager()
        self._draw(manager, [(0, 0), (100, 0), (100, 100)])
        manager.cancel_drawing()
        assert manager.drawing is None
        assert asyncio.run(manager.finish_drawing()) is None
        assert len(manager) == 0

    def test_control_all_ignored_while_drawing(self) -> None:
        manager = _make_manager()
        asyncio.run(manager.create([_zone()]))
        manager.start_drawing((500, 500))
        assert manager.control_all() == []

    def test_draw_then_undo(self) -> None:
        manager = _make_manager()
        self._draw(manager, [(0, 0), (100, 0), (100, 100)])
        asyncio.run(manager.finish_drawing())
        assert len(manager) == 1
        asyncio.run(manager.undo())
        assert len(manager) == 0
