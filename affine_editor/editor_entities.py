"""
editor_entities.py

Defines the entity classes handled by the editor (Layer, Displayable and its
concrete shapes Patch and Polyline).
Entities hold their intrinsic attributes (outline, transform, visual state).
Relationships between entities (layer assignment, links, extra paint layers)
are managed centrally by the EditorDocument class.
"""

import uuid
import weakref
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple, TYPE_CHECKING

import numpy as np

from .affine_transformations import identity_matrix, apply_transform, get_transformed_point
from .editor_common import BoundingBox, TransformationError

# Type hint for the document class without circular import
if TYPE_CHECKING:
    from .editor_document import EditorDocument

logger = logging.getLogger(__name__)


# --- Base Entity Class ---

# eq=False everywhere: identity is the internal_id, and numpy fields must not
# take part in a generated __eq__.
@dataclass(eq=False)
class EditorEntity:
    """Base class for all editor entities."""
    internal_id: uuid.UUID = field(default_factory=uuid.uuid4, init=False) # Primary key, set on creation
    user_identifier: str = "" # User-friendly ID, must be unique within the document

    def __post_init__(self):
        if not self.user_identifier:
            self.user_identifier = str(self.internal_id)

    def __hash__(self):
        return hash(self.internal_id)

    def __eq__(self, other):
        if not isinstance(other, EditorEntity):
            return NotImplemented
        return self.internal_id == other.internal_id


# --- Layer Entity ---

@dataclass(eq=False)
class Layer(EditorEntity):
    """A coordinate layer of a multi-layer document (e.g. one section of a stack)."""
    z: float = 0.0
    thickness: float = 1.0


# --- Displayable Entities ---

@dataclass(eq=False)
class Displayable(EditorEntity, ABC):
    """
    Abstract base for entities that can be selected and transformed.
    Holds the affine transform and visual state; layer membership and links
    live in the owning document.
    """
    transform: np.ndarray = field(default_factory=identity_matrix)
    color: Tuple[int, int, int] = (255, 255, 0)
    alpha: float = 1.0
    visible: bool = True
    locked: bool = False

    # Reference back to the document (transient, for context)
    _document_ref: Optional[weakref.ReferenceType] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        super().__post_init__()
        # Ensure transform is always a valid matrix
        if not isinstance(self.transform, np.ndarray) or self.transform.shape != (3, 3):
            self.transform = identity_matrix()
        else:
            self.transform = np.array(self.transform, dtype=float)

    # --- Document Context ---
    def get_document(self) -> Optional["EditorDocument"]:
        """Returns the owning document, if linked."""
        if self._document_ref:
            return self._document_ref()
        return None

    def set_document_link(self, document: Optional["EditorDocument"]):
        """Sets the weak reference to the owning document."""
        self._document_ref = weakref.ref(document) if document is not None else None

    # --- Transformations ---
    def get_transform(self) -> np.ndarray:
        """Returns a copy of the current affine transform."""
        return self.transform.copy()

    def set_transform(self, matrix: np.ndarray) -> None:
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (3, 3):
            raise TransformationError(f"Transform of '{self.user_identifier}' must be 3x3, got {matrix.shape}")
        self.transform = matrix.copy()
        document = self.get_document()
        if document:
            document.notify("transform", [self])

    def preconcatenate(self, at: np.ndarray) -> None:
        """Applies `at` after the current transform."""
        self.set_transform(at @ self.transform)

    # --- Geometry ---
    @abstractmethod
    def get_local_outline(self) -> List[Tuple[float, float]]:
        """Outline points in the entity's own coordinates."""
        pass

    def get_outline(self) -> List[Tuple[float, float]]:
        return apply_transform(self.get_local_outline(), self.transform)

    def get_bounding_box(self) -> BoundingBox:
        """Calculates the 2D bounding box in world coordinates."""
        return BoundingBox.from_points(self.get_outline())

    def get_center(self) -> Tuple[float, float]:
        return self.get_bounding_box().center

    # --- Relationships (delegated to the document) ---
    def get_layer(self) -> Optional[Layer]:
        document = self.get_document()
        return document.get_layer_of_entity(self) if document else None

    def get_linked_group(self) -> Set["Displayable"]:
        """This entity plus everything reachable through links."""
        document = self.get_document()
        if document is None:
            return {self}
        return document.get_linked_group(self)

    def is_linked(self) -> bool:
        document = self.get_document()
        return document.is_linked(self) if document else False

    def is_locked(self) -> bool:
        return self.locked

    def is_locked_in_group(self) -> bool:
        """True if any member of the linked group is locked."""
        return any(d.locked for d in self.get_linked_group())


@dataclass(eq=False)
class Patch(Displayable):
    """A rectangular image tile spanning (0, 0)-(width, height) in local coordinates."""
    width: float = 1.0
    height: float = 1.0

    def get_local_outline(self) -> List[Tuple[float, float]]:
        w, h = self.width, self.height
        return [(0.0, 0.0), (w, 0.0), (w, h), (0.0, h)]

    def get_center(self) -> Tuple[float, float]:
        return get_transformed_point((self.width / 2.0, self.height / 2.0), self.transform)


@dataclass(eq=False)
class Polyline(Displayable):
    relative_points: List[Tuple[float, float]] = field(default_factory=list)
    closed: bool = False

    def get_local_outline(self) -> List[Tuple[float, float]]:
        return [(p[0], p[1]) for p in self.relative_points]
