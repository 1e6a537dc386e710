"""
history.py

Unbounded undo/redo history over snapshot steps.

The cursor `index` always points at the step that represents the current
state. Appending while the cursor is not at the tip discards the redo future
first; appending a step identical to the current one does nothing.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)


class Step(ABC):
    """One undo/redo unit."""

    @abstractmethod
    def is_identical(self, other: 'Step') -> bool:
        """True if applying either step would produce the same state."""
        pass

    @abstractmethod
    def is_empty(self) -> bool:
        pass

    @abstractmethod
    def remove(self, entity_id: uuid.UUID) -> bool:
        """Forget everything stored about an entity. Returns True if something was removed."""
        pass

    @abstractmethod
    def apply(self) -> bool:
        """Restore the recorded state."""
        pass


StepType = TypeVar('StepType', bound=Step)


class History(Generic[StepType]):

    def __init__(self):
        self._steps: List[StepType] = []
        self._index: int = -1
        self._lock = threading.RLock()

    @property
    def index(self) -> int:
        return self._index

    @property
    def lock(self) -> threading.RLock:
        """Held by callers that move the cursor and apply the step as one unit."""
        return self._lock

    @property
    def size(self) -> int:
        return len(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def append(self, step: StepType) -> bool:
        """
        Record a step as the new current state.
        Returns False if the step is identical to the current one and was dropped.
        """
        with self._lock:
            current = self.get_current()
            if current is not None and current.is_identical(step):
                logger.debug("Step identical to the current step, not appended.")
                return False
            if not self.index_at_end():
                self.clip()
            self._steps.append(step)
            self._index = len(self._steps) - 1
            logger.debug(f"Appended {type(step).__name__}, history index {self._index}/{len(self._steps) - 1}")
            return True

    def append_at_end(self, step: StepType) -> None:
        """Push a step at the tail without moving the cursor."""
        with self._lock:
            self._steps.append(step)
            if self._index < 0:
                self._index = 0
            logger.debug(f"Appended {type(step).__name__} at end, history index {self._index}/{len(self._steps) - 1}")

    def clip(self) -> int:
        """Discard every step after the cursor. Returns how many were discarded."""
        with self._lock:
            n_removed = len(self._steps) - (self._index + 1)
            if n_removed > 0:
                del self._steps[self._index + 1:]
                logger.debug(f"Clipped {n_removed} redo step(s) from history.")
            return max(n_removed, 0)

    def undo_one_step(self) -> Optional[StepType]:
        """Move the cursor back and return the step that became current, or None at the start."""
        with self._lock:
            if self._index <= 0:
                logger.debug("No more steps to undo.")
                return None
            self._index -= 1
            return self._steps[self._index]

    def redo_one_step(self) -> Optional[StepType]:
        """Move the cursor forward and return the step that became current, or None at the tip."""
        with self._lock:
            if self._index >= len(self._steps) - 1:
                logger.debug("No more steps to redo.")
                return None
            self._index += 1
            return self._steps[self._index]

    def index_at_start(self) -> bool:
        with self._lock:
            return self._index <= 0

    def index_at_end(self) -> bool:
        with self._lock:
            return self._index == len(self._steps) - 1

    def can_undo(self) -> bool:
        return not self.index_at_start()

    def can_redo(self) -> bool:
        return not self.index_at_end()

    def get_current(self) -> Optional[StepType]:
        with self._lock:
            if 0 <= self._index < len(self._steps):
                return self._steps[self._index]
            return None

    def get(self, i: int) -> Optional[StepType]:
        with self._lock:
            if 0 <= i < len(self._steps):
                return self._steps[i]
            return None

    def clear(self) -> None:
        with self._lock:
            self._steps.clear()
            self._index = -1

    def remove(self, entity_id: uuid.UUID) -> int:
        """
        Purge an entity from every step. Steps left empty are dropped and the
        cursor is shifted so it keeps pointing at the same surviving step.
        Returns the number of steps that referenced the entity.
        """
        with self._lock:
            n_touched = 0
            kept: List[StepType] = []
            new_index = self._index
            for i, step in enumerate(self._steps):
                if step.remove(entity_id):
                    n_touched += 1
                if step.is_empty():
                    if i <= self._index:
                        new_index -= 1
                    continue
                kept.append(step)
            self._steps = kept
            self._index = min(max(new_index, 0 if kept else -1), len(kept) - 1)
            if n_touched:
                logger.debug(f"Removed entity {entity_id} from {n_touched} history step(s).")
            return n_touched
