"""
history_steps.py

Concrete history steps: whole-set snapshots of entity state.
A snapshot copies what it records at construction time and never changes
afterwards; applying it writes the recorded values back onto the entities.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from .history import Step

if TYPE_CHECKING:
    from .editor_entities import Displayable

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("transform", "locked", "visible", "color", "alpha")


class TransformSnapshot(Step):
    """Maps each entity to a copy of its affine transform at snapshot time."""

    def __init__(self, entities: Iterable['Displayable']):
        self._transforms: Dict['Displayable', np.ndarray] = {
            d: d.get_transform() for d in entities
        }

    @property
    def transforms(self) -> Dict['Displayable', np.ndarray]:
        return {d: t.copy() for d, t in self._transforms.items()}

    @property
    def entities(self) -> List['Displayable']:
        return list(self._transforms.keys())

    def get(self, entity: 'Displayable') -> Optional[np.ndarray]:
        t = self._transforms.get(entity)
        return None if t is None else t.copy()

    def is_identical(self, other: Step) -> bool:
        if type(other) is not type(self):
            return False
        if self._transforms.keys() != other._transforms.keys():
            return False
        return all(np.array_equal(t, other._transforms[d]) for d, t in self._transforms.items())

    def is_empty(self) -> bool:
        return not self._transforms

    def remove(self, entity_id: uuid.UUID) -> bool:
        for d in list(self._transforms):
            if d.internal_id == entity_id:
                del self._transforms[d]
                return True
        return False

    def apply(self) -> bool:
        for d, t in self._transforms.items():
            d.set_transform(t)
        logger.debug(f"Restored transforms of {len(self._transforms)} entities.")
        return True

    def __repr__(self):
        return f"TransformSnapshot({len(self._transforms)} entities)"


def _copy_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.copy()
    return value


def _values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        return isinstance(a, np.ndarray) and isinstance(b, np.ndarray) and np.array_equal(a, b)
    return a == b


class PropertySnapshot(Step):
    """
    Records a set of named fields for each entity.
    Used by checkpointed property changes (lock, visibility, color, alpha).
    """

    def __init__(self, entities: Iterable['Displayable'], field_names: Sequence[str]):
        unknown = [f for f in field_names if f not in SNAPSHOT_FIELDS]
        if unknown:
            raise ValueError(f"Cannot snapshot unknown field(s): {unknown}")
        self._fields: Tuple[str, ...] = tuple(field_names)
        self._values: Dict['Displayable', Dict[str, Any]] = {}
        for d in entities:
            self._values[d] = {name: _copy_value(self._read(d, name)) for name in self._fields}

    @staticmethod
    def _read(d: 'Displayable', name: str) -> Any:
        if name == "transform":
            return d.get_transform()
        return getattr(d, name)

    @property
    def fields(self) -> Tuple[str, ...]:
        return self._fields

    @property
    def entities(self) -> List['Displayable']:
        return list(self._values.keys())

    def get(self, entity: 'Displayable', name: str) -> Any:
        return _copy_value(self._values[entity][name])

    def is_identical(self, other: Step) -> bool:
        if type(other) is not type(self) or self._fields != other._fields:
            return False
        if self._values.keys() != other._values.keys():
            return False
        for d, values in self._values.items():
            other_values = other._values[d]
            if not all(_values_equal(values[n], other_values[n]) for n in self._fields):
                return False
        return True

    def is_empty(self) -> bool:
        return not self._values

    def remove(self, entity_id: uuid.UUID) -> bool:
        for d in list(self._values):
            if d.internal_id == entity_id:
                del self._values[d]
                return True
        return False

    def apply(self) -> bool:
        for d, values in self._values.items():
            for name, value in values.items():
                if name == "transform":
                    d.set_transform(value)
                else:
                    setattr(d, name, _copy_value(value))
        logger.debug(f"Restored {', '.join(self._fields)} of {len(self._values)} entities.")
        return True

    def __repr__(self):
        return f"PropertySnapshot({', '.join(self._fields)}; {len(self._values)} entities)"
