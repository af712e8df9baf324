"""Zone model: polygonal scene regions that override the ambient weather.

A ``ZoneRecord`` is one polygon placed on a scene.  Its vertices are
stored relative to the top-left corner of its ``Frame``; after every
normalisation pass the frame is the tight bounding box of the vertices.

Field access goes through a static schema (``ZONE_SCHEMA``): every
write is type-checked and every change flips the record's ``dirty``
flag so the manager knows which records still need to be persisted.

A record without an assigned id is *volatile*: it reports the sentinel
id ``"preview"`` and must never be written to a store.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from scenezone.core.geometry import (
    Point,
    Vertex,
    is_simple_polygon,
    normalize,
    point_in_polygon,
    rescale_points,
)

logger = logging.getLogger(__name__)

VOLATILE_ID = "preview"
MIN_VERTICES = 3


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GeometryInvalidError(ValueError):
    """A zone's polygon is not simple or violates the minimum distance."""


class SchemaTypeMismatchError(TypeError):
    """A field write used a value whose type disagrees with the schema."""

    def __init__(self, field_name: str, expected: str, value: Any) -> None:
        super().__init__(
            f"Invalid type [{type(value).__name__}] while trying to set "
            f"field [{field_name}] of type [{expected}]"
        )
        self.field_name = field_name
        self.value = value


# ---------------------------------------------------------------------------
# Enums and value types
# ---------------------------------------------------------------------------


class ZoneKind(Enum):
    """Effect profile of a zone on the ambient weather.

    Attributes:
        OUTSIDE: No shelter; the zone sees the ambient weather as is.
        LIGHT_ROOF: Partial shelter (awnings, canopies).  Precipitation
            and sunlight are halved.
        ROOFED: Full roof, open sides.  No precipitation or sunlight.
        ENCLOSED: Walled interior.  No weather, ground temperature.
        SUBTERRANEAN: Below ground.  No weather, underground
            temperature.
    """

    OUTSIDE = "outside"
    LIGHT_ROOF = "light_roof"
    ROOFED = "roofed"
    ENCLOSED = "enclosed"
    SUBTERRANEAN = "subterranean"


@dataclass
class Frame:
    """Axis-aligned bounding rectangle in scene coordinates.

    Attributes:
        x: Left edge x-coordinate.
        y: Top edge y-coordinate.
        width: Horizontal extent (must be >= 0).
        height: Vertical extent (must be >= 0).
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        """Validate that width and height are non-negative."""
        if self.width < 0:
            raise ValueError(f"Frame width must be >= 0, got {self.width}")
        if self.height < 0:
            raise ValueError(f"Frame height must be >= 0, got {self.height}")

    def contains_point(self, px: float, py: float) -> bool:
        """Check whether a point lies inside (or on the edge of) this frame."""
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height

    def center(self) -> tuple[float, float]:
        """Return the centre point of the frame."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    def contains_frame(self, other: Frame) -> bool:
        """Check whether *other* lies completely inside this frame."""
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.x + other.width <= self.x + self.width
            and other.y + other.height <= self.y + self.height
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    @classmethod
    def enclosing(cls, frames: Sequence[Frame]) -> Frame:
        """Return the smallest frame that contains every frame in *frames*.

        Raises:
            ValueError: If *frames* is empty.
        """
        if not frames:
            raise ValueError("enclosing() requires at least one frame")
        left = min(f.x for f in frames)
        top = min(f.y for f in frames)
        right = max(f.x + f.width for f in frames)
        bottom = max(f.y + f.height for f in frames)
        return cls(left, top, right - left, bottom - top)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldSchema:
    """Declared type and constraints of one ``ZoneRecord`` field.

    Attributes:
        types: Accepted runtime types.  ``bool`` is only accepted when
            listed explicitly, never as a number.
        initial: Value reported while the field is absent from the
            record's source.
        validator: Optional range check applied after the type check.
        item_type: For list fields, the required type of every item.
    """

    types: tuple[type, ...]
    initial: Any
    validator: Callable[[Any], bool] | None = None
    item_type: type | None = None

    @property
    def type_name(self) -> str:
        name = "|".join(t.__name__ for t in self.types)
        if self.item_type is not None:
            name = f"{name}[{self.item_type.__name__}]"
        return name

    def initial_value(self) -> Any:
        return copy.deepcopy(self.initial)

    def check(self, field_name: str, value: Any) -> None:
        """Raise if *value* does not match this schema.

        Raises:
            SchemaTypeMismatchError: On a type mismatch.
            ValueError: When the validator rejects the value.
        """
        if isinstance(value, bool) and bool not in self.types:
            raise SchemaTypeMismatchError(field_name, self.type_name, value)
        if not isinstance(value, self.types):
            raise SchemaTypeMismatchError(field_name, self.type_name, value)
        if self.item_type is not None:
            for item in value:
                if not isinstance(item, self.item_type):
                    raise SchemaTypeMismatchError(field_name, self.type_name, item)
        if self.validator is not None and not self.validator(value):
            raise ValueError(f"Value {value!r} is out of range for field [{field_name}]")

    def cast(self, value: Any) -> Any:
        """Best-effort conversion of a plain JSON value to the schema type.

        Values that cannot be converted are returned unchanged so that
        ``check`` reports the mismatch.
        """
        if isinstance(value, bool):
            return value
        if float in self.types and isinstance(value, int):
            return float(value)
        if ZoneKind in self.types and isinstance(value, str):
            try:
                return ZoneKind(value)
            except ValueError:
                return value
        if self.item_type is Vertex and isinstance(value, (list, tuple)):
            try:
                return [_cast_vertex(item) for item in value]
            except (KeyError, TypeError, ValueError):
                return value
        return value


def _cast_vertex(item: Any) -> Vertex:
    if isinstance(item, Vertex):
        return item
    if isinstance(item, dict):
        return Vertex(
            float(item["x"]), float(item["y"]), bool(item.get("permeable", False))
        )
    x, y, *rest = item
    return Vertex(float(x), float(y), bool(rest[0]) if rest else False)


_NUMBER = (int, float)

ZONE_SCHEMA: dict[str, FieldSchema] = {
    "x": FieldSchema(_NUMBER, 0.0),
    "y": FieldSchema(_NUMBER, 0.0),
    "width": FieldSchema(_NUMBER, 0.0, lambda v: v >= 0),
    "height": FieldSchema(_NUMBER, 0.0, lambda v: v >= 0),
    "z_order": FieldSchema((int,), 0),
    "vertices": FieldSchema((list,), [], item_type=Vertex),
    "locked": FieldSchema((bool,), False),
    "enabled": FieldSchema((bool,), True),
    "kind": FieldSchema((ZoneKind,), ZoneKind.OUTSIDE),
    "feather": FieldSchema(_NUMBER, 0.0, lambda v: 0 <= v <= 100),
}

GEOMETRY_FIELDS = ("x", "y", "width", "height", "vertices")


def cast_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Cast the schema fields of a plain patch to their schema types.

    Keys that are not schema fields (such as ``"id"``) pass through.
    Callers feeding external JSON into ``ZoneManager.update`` use this
    before the call.
    """
    return {
        name: ZONE_SCHEMA[name].cast(value) if name in ZONE_SCHEMA else value
        for name, value in data.items()
    }


# ---------------------------------------------------------------------------
# ZoneRecord
# ---------------------------------------------------------------------------


class ZoneRecord:
    """One polygonal zone and its attributes.

    Records are mutated only by the ``ZoneManager``.  Geometry edits
    (``move_vertex``, ``remove_vertex``, ``rescale``) validate the
    resulting polygon first and leave the record untouched when the
    shape would be invalid.

    Args:
        source: Initial field values keyed by schema name, plus an
            optional ``"id"``.  Absent fields report their schema's
            initial value.  Values must already have schema types; use
            ``from_dict`` for plain JSON data.
        persisted: Whether *source* mirrors what the store holds.  Only
            records loaded from a store pass ``True``.

    Example::

        record = ZoneRecord.from_dict({
            "vertices": [{"x": 0, "y": 0}, {"x": 100, "y": 0}, {"x": 50, "y": 100}],
        })
        record.normalize()
        record.move_vertex(2, (50, 80), min_distance=10)
    """

    def __init__(
        self,
        source: dict[str, Any] | None = None,
        persisted: bool = False,
    ) -> None:
        source = dict(source or {})
        self._id: str = str(source.pop("id", "") or "")
        self._source: dict[str, Any] = {}
        for name, value in source.items():
            schema = ZONE_SCHEMA.get(name)
            if schema is None:
                raise KeyError(f"Unknown zone field [{name}]")
            schema.check(name, value)
            self._source[name] = copy.deepcopy(value)
        self._dirty = not persisted
        self._flush_pending = False

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any], persisted: bool = False) -> ZoneRecord:
        """Build a record from a plain attribute map.

        JSON primitives are cast to the schema types first (vertex
        dicts to ``Vertex``, kind strings to ``ZoneKind``, integers to
        floats).  Unknown keys are ignored.

        Args:
            data: Attribute map as produced by ``to_dict``.
            persisted: Forwarded to the constructor.

        Returns:
            A new ``ZoneRecord``.

        Raises:
            SchemaTypeMismatchError: If a value cannot be cast.
        """
        source = cast_fields({k: v for k, v in data.items() if k in ZONE_SCHEMA})
        if data.get("id"):
            source["id"] = str(data["id"])
        return cls(source, persisted=persisted)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain attribute map suitable for JSON.

        Returns:
            A dict with every schema field (initial values included),
            the id (empty for volatile records), ``kind`` as its string
            value and vertices as ``{"x", "y", "permeable"}`` dicts.
        """
        data: dict[str, Any] = {"id": self._id}
        for name in ZONE_SCHEMA:
            value = self.get(name)
            if name == "vertices":
                value = [v._asdict() for v in value]
            elif name == "kind":
                value = value.value
            data[name] = value
        return data

    def clone(self) -> ZoneRecord:
        """Deep-copy every field except the id.

        The clone is volatile until a manager assigns it an id.
        """
        return ZoneRecord(copy.deepcopy(self._source))

    def snapshot(self) -> ZoneRecord:
        """Exact copy including id and persistence flags."""
        dup = self.clone()
        dup._id = self._id
        dup._dirty = self._dirty
        dup._flush_pending = self._flush_pending
        return dup

    def restore(self, snapshot: ZoneRecord) -> None:
        """Reset every field and flag to those of *snapshot*."""
        self._source = copy.deepcopy(snapshot._source)
        self._dirty = snapshot._dirty
        self._flush_pending = snapshot._flush_pending

    # ------------------------------------------------------------------
    # Typed field access
    # ------------------------------------------------------------------

    def get(self, name: str) -> Any:
        """Return the current value of a schema field.

        Raises:
            KeyError: If *name* is not a schema field.
        """
        schema = ZONE_SCHEMA[name]
        if name in self._source:
            value = self._source[name]
            return list(value) if isinstance(value, list) else value
        return schema.initial_value()

    def set(self, name: str, value: Any) -> None:
        """Write a schema field after checking its type.

        Marks the record dirty when the value changes.

        Raises:
            KeyError: If *name* is not a schema field.
            SchemaTypeMismatchError: If the value type is wrong.
            ValueError: If the value is out of range.
        """
        schema = ZONE_SCHEMA[name]
        schema.check(name, value)
        if isinstance(value, list):
            value = list(value)
        if self.get(name) != value:
            self._dirty = True
        self._source[name] = value

    # ------------------------------------------------------------------
    # Identity and persistence state
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        """Assigned id, or ``"preview"`` for a volatile record."""
        return self._id or VOLATILE_ID

    @property
    def is_volatile(self) -> bool:
        return not self._id

    @property
    def dirty(self) -> bool:
        """True while in-memory state differs from the last persisted state."""
        return self._dirty

    @property
    def persisted(self) -> bool:
        return not self._dirty and not self.is_volatile

    @property
    def flush_pending(self) -> bool:
        """True when a normalisation asked for a write that has not happened."""
        return self._flush_pending

    def assign_id(self, zone_id: str) -> None:
        if not zone_id or zone_id == VOLATILE_ID:
            raise ValueError(f"Invalid zone id {zone_id!r}")
        self._id = zone_id
        self._dirty = True

    def clear_id(self) -> None:
        self._id = ""

    def mark_persisted(self) -> None:
        self._dirty = False
        self._flush_pending = False

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    @property
    def frame(self) -> Frame:
        return Frame(self.get("x"), self.get("y"), self.get("width"), self.get("height"))

    @property
    def vertices(self) -> list[Vertex]:
        """Copy of the vertex list, relative to the frame origin."""
        return self.get("vertices")

    @property
    def kind(self) -> ZoneKind:
        return self.get("kind")

    @property
    def feather(self) -> float:
        return self.get("feather")

    @property
    def enabled(self) -> bool:
        return self.get("enabled")

    @property
    def locked(self) -> bool:
        return self.get("locked")

    @property
    def z_order(self) -> int:
        return self.get("z_order")

    @property
    def center(self) -> tuple[float, float]:
        return self.frame.center()

    def absolute_vertices(self) -> list[tuple[float, float]]:
        """Vertex positions in scene coordinates."""
        ox, oy = self.get("x"), self.get("y")
        return [(v.x + ox, v.y + oy) for v in self.vertices]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_valid(self, min_distance: float) -> bool:
        """Check vertex count, simplicity and minimum distance."""
        vertices = self.vertices
        return len(vertices) >= MIN_VERTICES and is_simple_polygon(vertices, min_distance)

    def require_valid(self, min_distance: float) -> None:
        """Like ``is_valid`` but raises.

        Raises:
            GeometryInvalidError: If the polygon is invalid.
        """
        if not self.is_valid(min_distance):
            raise GeometryInvalidError(f"Zone [{self.id}] has an invalid polygon shape")

    def covers_point(self, x: float, y: float) -> bool:
        """Check whether a scene point lies inside the polygon."""
        if not self.frame.contains_point(x, y):
            return False
        return point_in_polygon((x - self.get("x"), y - self.get("y")), self.vertices)

    # ------------------------------------------------------------------
    # Geometry mutation
    # ------------------------------------------------------------------

    def move_vertex(self, index: int, position: Point, min_distance: float) -> bool:
        """Move one vertex to a scene position if the shape stays valid.

        Args:
            index: Vertex index; negative values count from the end.
            position: New ``(x, y)`` in scene coordinates.
            min_distance: Required vertex-to-edge clearance.  A negative
                value skips validation.

        Returns:
            True if the move was applied, False if it was rejected and
            the record left unchanged.
        """
        vertices = self.vertices
        old = vertices[index]
        vertices[index] = old._replace(
            x=position[0] - self.get("x"),
            y=position[1] - self.get("y"),
        )
        if min_distance >= 0 and not is_simple_polygon(vertices, min_distance):
            logger.debug("Rejected vertex move on zone %s: invalid polygon shape", self.id)
            return False
        self.set("vertices", vertices)
        return True

    def insert_vertex(
        self,
        after_index: int,
        position: Point,
        permeable: bool = False,
    ) -> None:
        """Insert a vertex after *after_index* at a scene position.

        The caller is responsible for calling ``normalize`` afterwards.
        """
        vertices = self.vertices
        vertices.insert(
            after_index + 1,
            Vertex(position[0] - self.get("x"), position[1] - self.get("y"), permeable),
        )
        self.set("vertices", vertices)

    def remove_vertex(self, index: int, min_distance: float) -> bool:
        """Remove a vertex if the remaining polygon stays valid.

        The removal is tried on a clone first, so a rejected removal
        leaves this record exactly as it was.

        Returns:
            True if the vertex was removed, False if rejected.
        """
        if len(self.vertices) - 1 < MIN_VERTICES:
            return False
        trial = self.clone()
        vertices = trial.vertices
        del vertices[index]
        trial.set("vertices", vertices)
        trial.normalize(persist=False)
        if not trial.is_valid(min_distance):
            logger.debug("Rejected vertex removal on zone %s: invalid polygon shape", self.id)
            return False
        self.copy_geometry_from(trial)
        return True

    def translate(self, dx: float, dy: float) -> None:
        """Shift the whole zone by ``(dx, dy)``."""
        self.set("x", self.get("x") + dx)
        self.set("y", self.get("y") + dy)

    def rescale(
        self,
        original: ZoneRecord,
        source: Frame,
        target: Frame,
        min_distance: float,
    ) -> bool:
        """Fit *original*'s polygon from *source* onto *target*.

        Every scene position of *original* is mapped linearly from the
        source rectangle onto the target rectangle.  Used while a
        bounding frame handle is dragged.

        Returns:
            True if the rescaled shape was valid and applied.
        """
        points = rescale_points(
            original.absolute_vertices(), source.as_tuple(), target.as_tuple()
        )
        ox, oy = self.get("x"), self.get("y")
        vertices = [
            v._replace(x=px - ox, y=py - oy)
            for v, (px, py) in zip(original.vertices, points)
        ]
        if not is_simple_polygon(vertices, min_distance):
            logger.debug("Rejected rescale of zone %s: invalid polygon shape", self.id)
            return False
        self.set("vertices", vertices)
        self.normalize(persist=False)
        return True

    def normalize(self, persist: bool = True) -> ZoneRecord:
        """Drop duplicate vertices and fit the frame to the vertices.

        The record is marked dirty.

        Args:
            persist: Request a store write (see ``flush_pending``).  Pass
                False during a gesture to avoid a write per pointer
                move; the manager only writes records that asked for
                it.

        Returns:
            ``self``, for chaining.
        """
        vertices = self.vertices
        if not vertices:
            return self
        result = normalize(vertices)
        self.set("vertices", result.vertices)
        self.set("x", self.get("x") + result.min_x)
        self.set("y", self.get("y") + result.min_y)
        self.set("width", result.width)
        self.set("height", result.height)
        self._dirty = True
        if persist:
            self._flush_pending = True
        return self

    def copy_geometry_from(self, other: ZoneRecord) -> None:
        """Take over frame and vertices of *other*."""
        for name in GEOMETRY_FIELDS:
            self.set(name, other.get(name))

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        frame = self.frame
        return (
            f"ZoneRecord(id={self.id!r}, kind={self.kind.value}, "
            f"frame=({frame.x}, {frame.y}, {frame.width}, {frame.height}), "
            f"vertices={len(self.vertices)}, dirty={self._dirty})"
        )
