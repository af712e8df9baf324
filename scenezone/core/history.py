"""Bounded undo history for zone CRUD operations.

Each ``HistoryEntry`` stores the *inverse* of an operation that was
applied: creating zones records a ``DELETE`` entry, deleting zones
records a ``CREATE`` entry with full snapshots, and updating zones
records an ``UPDATE`` entry with the values the fields held before the
update.  Replaying an entry therefore undoes the original operation.

The history is a fixed-capacity ring buffer backed by
``collections.deque``; once full, the oldest entry is dropped and that
operation can no longer be undone.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class HistoryAction(Enum):
    """The operation that undoes a recorded change.

    Attributes:
        CREATE: Re-create the stored snapshots with their original ids.
        DELETE: Delete the stored zone ids.
        UPDATE: Re-apply the stored pre-update field values.
    """

    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"


@dataclass
class HistoryEntry:
    """One undoable step.

    Attributes:
        action: Which inverse operation to run.
        data: Payload for the inverse operation.  Zone ids for
            ``DELETE``, attribute maps (snapshots or patches, each with
            an ``"id"`` key) for ``CREATE`` and ``UPDATE``.
        positions: Collection index of each re-created zone, for
            ``CREATE`` entries.  Empty when the order does not matter.
        timestamp: Unix timestamp when the entry was recorded.
    """

    action: HistoryAction
    data: list[Any]
    positions: list[int] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def zone_ids(self) -> list[str]:
        """Ids of every zone the entry touches."""
        if self.action is HistoryAction.DELETE:
            return [str(item) for item in self.data]
        return [str(item["id"]) for item in self.data]


class UndoHistory:
    """Fixed-depth stack of ``HistoryEntry`` objects.

    Args:
        depth: Maximum number of entries kept.  Must be >= 1.
    """

    def __init__(self, depth: int = 10) -> None:
        if depth < 1:
            raise ValueError(f"History depth must be >= 1, got {depth}")
        self._entries: deque[HistoryEntry] = deque(maxlen=depth)

    def push(
        self,
        action: HistoryAction,
        data: list[Any],
        positions: list[int] | None = None,
    ) -> HistoryEntry:
        """Record a new entry, evicting the oldest one when full."""
        entry = HistoryEntry(action=action, data=data, positions=list(positions or []))
        if len(self._entries) == self._entries.maxlen:
            logger.debug("History full, dropping oldest %s entry", self._entries[0].action.value)
        self._entries.append(entry)
        logger.debug("Stored %s history entry for %d zone(s)", action.value, len(data))
        return entry

    def pop(self) -> HistoryEntry | None:
        """Remove and return the most recent entry, or ``None`` if empty."""
        if not self._entries:
            return None
        return self._entries.pop()

    def clear(self) -> None:
        self._entries.clear()

    @property
    def depth(self) -> int:
        """Maximum number of entries the history can hold."""
        maxlen = self._entries.maxlen
        return maxlen if maxlen is not None else 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __repr__(self) -> str:
        return f"UndoHistory(size={len(self._entries)}, depth={self.depth})"
