from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

from engine.buffer import PixelBuffer
from engine.state import Layer

logger = logging.getLogger(__name__)


@dataclass
class SnapshotEntry:
    """Whole-document state. ``layers`` is None for a plain flattened image."""

    action: str
    image: PixelBuffer
    layers: Optional[List[Layer]] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def clone(self) -> SnapshotEntry:
        layers = None if self.layers is None else [layer.copy() for layer in self.layers]
        return SnapshotEntry(self.action, self.image.clone(), layers, self.timestamp)


@dataclass
class LayerDiffEntry:
    """One layer before and after an edit; None means the layer did not exist."""

    action: str
    layer_id: str
    previous_state: Optional[Layer]
    new_state: Optional[Layer]
    index: int = -1
    timestamp: datetime = field(default_factory=datetime.now)

    def clone(self) -> LayerDiffEntry:
        prev = None if self.previous_state is None else self.previous_state.copy()
        new = None if self.new_state is None else self.new_state.copy()
        return LayerDiffEntry(self.action, self.layer_id, prev, new, self.index, self.timestamp)


HistoryEntry = Union[SnapshotEntry, LayerDiffEntry]

RestoreSnapshot = Callable[[SnapshotEntry], None]
RestoreLayer = Callable[[LayerDiffEntry, Optional[Layer]], None]


class HistoryLog:
    """
    Linear undo/redo log with a cursor.

    ``index`` points at the entry describing the current state; -1 means empty.
    Undoing a layer diff puts back its previous state. Undoing a snapshot goes
    back to the nearest earlier snapshot and replays the layer diffs recorded
    after it.
    """

    def __init__(
        self,
        limit: int = 100,
        restore_snapshot: Optional[RestoreSnapshot] = None,
        restore_layer: Optional[RestoreLayer] = None,
    ) -> None:
        self.limit = max(1, int(limit))
        self.restore_snapshot = restore_snapshot
        self.restore_layer = restore_layer
        self.entries: List[HistoryEntry] = []
        self.index = -1

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def current(self) -> Optional[HistoryEntry]:
        if 0 <= self.index < len(self.entries):
            return self.entries[self.index]
        return None

    @property
    def can_undo(self) -> bool:
        return self.index > 0

    @property
    def can_redo(self) -> bool:
        return self.index < len(self.entries) - 1

    def labels(self) -> List[str]:
        return [e.action for e in self.entries]

    def record(self, entry: HistoryEntry) -> None:
        del self.entries[self.index + 1:]
        self.entries.append(entry.clone())
        overflow = len(self.entries) - self.limit
        if overflow > 0:
            del self.entries[:overflow]
        self.index = len(self.entries) - 1

    def clear(self) -> None:
        self.entries = []
        self.index = -1

    def undo(self) -> bool:
        if self.index <= 0:
            return False
        entry = self.entries[self.index]
        if isinstance(entry, LayerDiffEntry):
            self._apply_layer(entry, entry.previous_state)
        else:
            self._rebuild(self.index - 1)
        self.index -= 1
        logger.debug("undo %s -> index %d", entry.action, self.index)
        return True

    def redo(self) -> bool:
        if self.index >= len(self.entries) - 1:
            return False
        self.index += 1
        entry = self.entries[self.index]
        if isinstance(entry, LayerDiffEntry):
            self._apply_layer(entry, entry.new_state)
        else:
            self._apply_snapshot(entry)
        logger.debug("redo %s -> index %d", entry.action, self.index)
        return True

    def jump_to(self, index: int) -> bool:
        target = int(index)
        if target < 0 or target >= len(self.entries):
            return False
        while self.index > target:
            if not self.undo():
                break
        while self.index < target:
            if not self.redo():
                break
        return self.index == target

    def _rebuild(self, target: int) -> None:
        start = None
        for i in range(target, -1, -1):
            if isinstance(self.entries[i], SnapshotEntry):
                start = i
                break
        if start is None:
            logger.debug("no snapshot at or before %d; nothing to restore", target)
            return
        self._apply_snapshot(self.entries[start])
        for entry in self.entries[start + 1:target + 1]:
            if isinstance(entry, LayerDiffEntry):
                self._apply_layer(entry, entry.new_state)

    def _apply_snapshot(self, entry: SnapshotEntry) -> None:
        if self.restore_snapshot is not None:
            self.restore_snapshot(entry.clone())

    def _apply_layer(self, entry: LayerDiffEntry, state: Optional[Layer]) -> None:
        if self.restore_layer is not None:
            self.restore_layer(entry, None if state is None else state.copy())
