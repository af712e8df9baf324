"""Configuration defaults for the SceneZone editor.

Provides the ``Settings`` dataclass that holds every tunable parameter
for zone geometry validation, the undo history, and the persistence
backends.

Typical usage::

    from scenezone.config.settings import get_default_settings

    settings = get_default_settings()
    print(settings.min_distance)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for a zone editing session.

    Attributes:
        grid_size: Size of one scene grid cell in scene units.  Used as
            the base for the minimum distance between a vertex and the
            non-incident edges of its polygon.
        min_distance_factor: Fraction of ``grid_size`` a vertex must
            keep away from every non-incident edge.
        history_depth: Number of undoable operations kept by the
            ``ZoneManager``.  Older entries are dropped.
        min_vertices: Smallest vertex count a committed zone may have.
        store_dir: Directory where ``JsonFileZoneStore`` keeps one
            document per scene.
        store_url: Base URL of a remote document store used by
            ``HttpZoneStore``.  Empty when no remote store is set up.
        store_timeout_seconds: HTTP timeout for remote store requests.
        default_kind: Value of the ``ZoneKind`` given to new zones.
    """

    # -- Geometry -------------------------------------------------------------
    grid_size: float = 100.0
    min_distance_factor: float = 0.5
    min_vertices: int = 3

    # -- History --------------------------------------------------------------
    history_depth: int = 10

    # -- Persistence ----------------------------------------------------------
    store_dir: str = "zones"
    store_url: str = ""
    store_timeout_seconds: float = 10.0

    # -- Zones ----------------------------------------------------------------
    default_kind: str = "outside"

    @property
    def min_distance(self) -> float:
        """Minimum vertex-to-edge distance in scene units."""
        return self.grid_size * self.min_distance_factor

    # -- Factory & serialisation ----------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create a ``Settings`` instance from a plain dictionary.

        Unknown keys are silently ignored so that forward-compatible
        config files do not break older versions.

        Args:
            data: Dictionary whose keys correspond to ``Settings``
                field names.

        Returns:
            A new ``Settings`` instance populated from *data*, with
            defaults filling any missing keys.
        """
        known_names = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_names}
        return cls(**filtered)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the settings to a plain dictionary.

        Returns:
            A shallow dictionary mapping every field name to its
            current value.
        """
        return asdict(self)


def get_default_settings() -> Settings:
    """Return a ``Settings`` instance with all default values.

    Returns:
        A freshly constructed ``Settings`` with default values.
    """
    return Settings()
