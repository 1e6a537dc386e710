"""
selection.py

The Selection tracks which entities the user has selected in one view and
mediates every batch operation on them.

It owns three collections:
- the selected queue (ordered, no duplicates), whose last added member is
  normally the active entity,
- the affected set: the selected entities plus everything linked to them,
  which is what geometric operations act on,
- the previous selection, for a single-level restore.

The selection box is the union of the bounding boxes of the selected entities
(not of the affected ones) and is recomputed whenever membership or geometry
changes. Every public method takes the selection lock, so a repaint thread can
read consistent state while an edit is in flight.
"""

import enum
import logging
import threading
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set, Type

import numpy as np

from .affine_transformations import translation_matrix, rotation_matrix_deg, scale_matrix
from .collaborators import HeadlessInteraction, Interaction, RepaintScheduler, ValueField
from .editor_common import BoundingBox
from .editor_config import EditorConfig
from .editor_document import EditorDocument
from .editor_entities import Displayable, Layer

logger = logging.getLogger(__name__)

Listener = Callable[[str, List[Displayable]], None]


class TransformOp(enum.Enum):
    TRANSLATE = "translate"  # params: dx, dy
    ROTATE = "rotate"        # params: angle in degrees, about the box center
    SCALE = "scale"          # params: sx, sy, about the box center


class Selection:

    def __init__(self, document: EditorDocument, layer: Optional[Layer] = None,
                 repaint: Optional[RepaintScheduler] = None,
                 interaction: Optional[Interaction] = None,
                 config: Optional[EditorConfig] = None):
        self.document = document
        self.repaint = repaint
        self.interaction = interaction or HeadlessInteraction()
        self.config = config or EditorConfig()
        self._layer = layer
        self._lock = threading.RLock()
        self._queue: List[Displayable] = []
        self._affected: Set[Displayable] = set()
        self._previous: List[Displayable] = []
        self._active: Optional[Displayable] = None
        self._box: Optional[BoundingBox] = None
        self._listeners: List[Listener] = []
        document.add_listener(self._on_document_change)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def dispose(self) -> None:
        """Detach from the document."""
        self.document.remove_listener(self._on_document_change)

    def _on_document_change(self, kind: str, entities: List[Displayable]) -> None:
        if kind == "removed":
            for d in entities:
                self.remove(d)
                self.remove_from_previous(d)
        elif kind == "link":
            with self._lock:
                if any(d in self._affected for d in entities):
                    self.update()

    # --- Notifications ---

    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, kind: str, entities: Iterable[Displayable]) -> None:
        entities = list(entities)
        for callback in list(self._listeners):
            try:
                callback(kind, entities)
            except Exception:
                logger.exception(f"Selection listener failed on '{kind}' notification.")

    def _request_repaint(self, region: Optional[BoundingBox]) -> None:
        if self.repaint is None or region is None or not region.is_valid():
            return
        self.repaint.request_repaint(region.expand(self.config.selection_padding))

    # --- Membership ---

    def _set_previous(self, entities: Sequence[Displayable]) -> None:
        """Remember a non-empty selection for restore()."""
        if entities:
            self._previous = list(entities)

    def add(self, d: Optional[Displayable]) -> bool:
        if d is None:
            logger.warning("Selection.add: skipping null entity.")
            return False
        with self._lock:
            if d in self._queue:
                logger.debug(f"Selection.add: already have '{d.user_identifier}' selected.")
                return False
            self._set_previous(self._queue)
            self._queue.append(d)
            self._active = d
            self._box = d.get_bounding_box().union(self._box)
            if d not in self._affected:
                self._affected.add(d)
                self._affected.update(d.get_linked_group())
            logger.debug(f"Selected '{d.user_identifier}' ({len(self._queue)} selected, {len(self._affected)} affected)")
        self._notify("selection", [d])
        return True

    def select_all(self, collection: Iterable[Displayable]) -> int:
        """Adds every entity of the collection. Returns how many were newly selected."""
        entities = [d for d in collection if d is not None]
        if not entities:
            return 0
        added = []
        with self._lock:
            self._set_previous(self._queue)
            for d in entities:
                if d in self._queue:
                    continue
                self._queue.append(d)
                added.append(d)
                if d in self._affected:
                    continue
                self._affected.add(d)
                self._affected.update(d.get_linked_group())
            self.reset_box()
            if self._active is None and self._queue:
                self._active = self._queue[-1]
        if added:
            self._notify("selection", added)
        return len(added)

    def select_all_in_layer(self, layer: Optional[Layer] = None) -> int:
        layer = layer or self.get_layer()
        if layer is None:
            logger.warning("Selection.select_all_in_layer: no layer to select from.")
            return 0
        return self.select_all(self.document.get_entities_on_layer(layer))

    def select_all_visible(self, layer: Optional[Layer] = None) -> int:
        """Like select_all_in_layer, skipping hidden, fully transparent and zero-area entities."""
        layer = layer or self.get_layer()
        if layer is None:
            logger.warning("Selection.select_all_visible: no layer to select from.")
            return 0
        candidates = []
        for d in self.document.get_entities_on_layer(layer):
            if not d.visible or d.alpha == 0:
                continue
            bbox = d.get_bounding_box()
            if bbox.width == 0 or bbox.height == 0:
                continue
            candidates.append(d)
        return self.select_all(candidates)

    def remove(self, d: Optional[Displayable]) -> bool:
        if d is None:
            logger.warning("Selection.remove: null entity to remove.")
            return False
        with self._lock:
            if d not in self._queue:
                logger.debug(f"Selection.remove: '{d.user_identifier}' is not selected.")
                return False
            self._set_previous(self._queue)
            self._queue.remove(d)
            if d == self._active:
                self._active = self._queue[-1] if self._queue else None
            if not self._queue:
                self._box = None
                self._affected.clear()
            else:
                self._affected = self._linked_closure(self._queue)
                self.reset_box()
        self._notify("selection", [d])
        return True

    def remove_all(self, collection: Iterable[Displayable]) -> int:
        return sum(1 for d in list(collection) if self.remove(d))

    def clear(self) -> None:
        with self._lock:
            if not self._queue:
                return
            old_box = self._box
            removed = list(self._queue)
            self._set_previous(self._queue)
            self._queue.clear()
            self._affected.clear()
            self._active = None
            self._box = None
        self._request_repaint(old_box)
        self._notify("selection", removed)

    def restore(self) -> None:
        """Swaps the current selection with the previous one."""
        with self._lock:
            current = list(self._queue)
            previous = [d for d in self._previous if d.get_document() is self.document]
            self.clear()
            if previous:
                self.select_all(previous)
            self._previous = current
        logger.debug(f"Restored previous selection of {len(previous)} entities.")

    def remove_from_previous(self, d: Displayable) -> None:
        with self._lock:
            if d in self._previous:
                self._previous.remove(d)

    def update(self) -> None:
        """Recomputes the affected set, e.g. after links were edited."""
        with self._lock:
            self._affected = self._linked_closure(self._queue)
            if not self._affected:
                self._active = None
        self._notify("selection", self._queue)

    @staticmethod
    def _linked_closure(entities: Iterable[Displayable]) -> Set[Displayable]:
        closure: Set[Displayable] = set()
        for d in entities:
            if d not in closure:
                closure.update(d.get_linked_group())
        return closure

    def set_active(self, d: Displayable) -> bool:
        with self._lock:
            if d not in self._queue:
                logger.warning(f"Selection.set_active: '{getattr(d, 'user_identifier', d)}' is not part of the selection.")
                return False
            self._active = d
        return True

    def get_active(self) -> Optional[Displayable]:
        return self._active

    # --- Queries ---

    def get_selected(self, cls: Optional[Type[Displayable]] = None) -> List[Displayable]:
        """A copy of the selected entities (not their linked ones), optionally filtered by type."""
        with self._lock:
            if cls is None or cls is Displayable:
                return list(self._queue)
            return [d for d in self._queue if isinstance(d, cls)]

    def get_affected(self, cls: Optional[Type[Displayable]] = None) -> Set[Displayable]:
        with self._lock:
            if cls is None or cls is Displayable:
                return set(self._affected)
            return {d for d in self._affected if isinstance(d, cls)}

    def get_selected_sorted(self, cls: Optional[Type[Displayable]] = None) -> List[Displayable]:
        """Selected entities in document order (layer order, then position in the layer)."""
        return sorted(self.get_selected(cls), key=self.document.sort_key)

    def get_box(self) -> Optional[BoundingBox]:
        return self._box

    def reset_box(self) -> None:
        with self._lock:
            box = None
            for d in self._queue:
                box = d.get_bounding_box().union(box)
            self._box = box

    def get_linked_box(self) -> Optional[BoundingBox]:
        """Box of the active entity and every affected entity in its layer, for minimal repaints."""
        with self._lock:
            if self._active is None:
                return None
            layer = self._active.get_layer()
            box = self._active.get_bounding_box()
            for d in self._affected:
                if d != self._active and d.get_layer() == layer:
                    box = box.union(d.get_bounding_box())
            return box

    def get_layer(self) -> Optional[Layer]:
        """The view's layer, or else the layer of the first selected entity."""
        if self._layer is not None:
            return self._layer
        with self._lock:
            return self._queue[0].get_layer() if self._queue else None

    def is_locked(self) -> bool:
        """True if any selected entity is directly or indirectly (through links) locked."""
        with self._lock:
            if self._active is None or not self._affected:
                return False
            return any(d.is_locked() for d in self._affected)

    def is_empty(self) -> bool:
        with self._lock:
            return not self._queue

    def contains(self, d: Displayable) -> bool:
        with self._lock:
            return d in self._queue

    def contains_type(self, cls: Type[Displayable]) -> bool:
        with self._lock:
            return any(isinstance(d, cls) for d in self._queue)

    def contains_affected(self, cls: Type[Displayable]) -> bool:
        with self._lock:
            return any(isinstance(d, cls) for d in self._affected)

    @property
    def n_selected(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def n_linked(self) -> int:
        with self._lock:
            return len(self._affected)

    # --- Geometry primitives (no checkpoints) ---

    def preconcatenate(self, at: np.ndarray) -> bool:
        """Applies `at` after the transform of every affected entity, without a checkpoint."""
        with self._lock:
            affected = list(self._affected)
            if not affected:
                logger.warning("Cannot transform an empty selection.")
                return False
            self.document.preconcatenate(at, affected)
            self.reset_box()
        self._notify("geometry", affected)
        return True

    def translate(self, dx: float, dy: float) -> bool:
        """Moves the affected entities. The pivot of an editor is not moved."""
        return self.preconcatenate(translation_matrix(dx, dy))

    def rotate(self, angle_deg: float, origin_x: float, origin_y: float) -> bool:
        return self.preconcatenate(rotation_matrix_deg(angle_deg, origin_x, origin_y))

    def scale(self, sx: float, sy: float, origin_x: float, origin_y: float) -> bool:
        if sx == 0 or sy == 0:
            self.interaction.show_message("Cannot scale to 0.")
            return False
        return self.preconcatenate(scale_matrix(sx, sy, origin_x, origin_y))

    # --- Checkpointed operations ---

    def apply(self, op: TransformOp, params: Sequence[float]) -> bool:
        """
        Applies one transform to the affected entities as a single undoable step.
        Rotation and scaling are about the center of the selection box.
        """
        with self._lock:
            if self._active is None:
                logger.warning(f"Cannot {op.value} an empty selection.")
                return False
            affected = self.get_affected()
            before = self.document.add_transform_step(affected)
            region = self.get_linked_box()
            try:
                cx, cy = self._box.center
                if op is TransformOp.TRANSLATE:
                    done = self.translate(params[0], params[1])
                elif op is TransformOp.ROTATE:
                    done = self.rotate(params[0], cx, cy)
                elif op is TransformOp.SCALE:
                    done = self.scale(params[0], params[1], cx, cy)
                else:
                    raise ValueError(f"Unknown transform operation: {op}")
                self.document.add_transform_step(affected)
            except Exception:
                logger.exception(f"Failed to {op.value} selection, rolling back.")
                self.document.rollback(before)
                self.reset_box()
                return False
            region = (region or BoundingBox()).union(self.get_linked_box())
        self._request_repaint(region)
        return done

    def specify(self) -> bool:
        """
        Asks for an origin, a rotation, a translation and a scale, and applies them
        in that order as one undoable step.
        """
        with self._lock:
            if self._active is None or self._box is None:
                logger.warning("Nothing selected to transform.")
                return False
            cx, cy = self._box.center
        fields = [
            ValueField("origin X", default=cx),
            ValueField("origin Y", default=cy),
            ValueField("rotate", default=0.0),
            ValueField("translate in X", default=0.0),
            ValueField("translate in Y", default=0.0),
            ValueField("scale in X", default=1.0),
            ValueField("scale in Y", default=1.0),
        ]
        values = self.interaction.collect_values("Specify", fields)
        if values is None:
            logger.debug("Specify cancelled.")
            return False
        x_o, y_o, rot, dx, dy, sx, sy = (float(v) for v in values)
        if sx == 0 or sy == 0:
            self.interaction.show_message("Cannot scale to 0.")
            return False
        with self._lock:
            affected = self.get_affected()
            before = self.document.add_transform_step(affected)
            region = self.get_linked_box()
            try:
                if dx != 0 or dy != 0:
                    self.translate(dx, dy)
                if rot != 0:
                    self.rotate(rot, x_o, y_o)
                if sx != 1 or sy != 1:
                    self.scale(sx, sy, x_o, y_o)
                self.document.add_transform_step(affected)
            except Exception:
                logger.exception("Failed to apply specified transform, rolling back.")
                self.document.rollback(before)
                self.reset_box()
                return False
            region = (region or BoundingBox()).union(self.get_linked_box())
        self._request_repaint(region)
        return True

    def _apply_with_checkpoint(self, field_name: str, mutation: Callable[[Displayable], bool],
                               targets: Optional[Iterable[Displayable]] = None) -> List[Displayable]:
        """
        Runs `mutation` on each target between two snapshots of `field_name`.
        The mutation returns True if it changed the entity. On failure the
        before-snapshot is restored. Returns the entities that changed.
        """
        with self._lock:
            if self._active is None:
                logger.warning(f"Cannot set '{field_name}' on an empty selection.")
                return []
            targets = list(self._queue) if targets is None else list(targets)
            before = self.document.add_data_edit_step(targets, [field_name])
            try:
                changed = [d for d in targets if mutation(d)]
                self.document.add_data_edit_step(targets, [field_name])
            except Exception:
                logger.exception(f"Failed to set '{field_name}', rolling back.")
                self.document.rollback(before)
                return []
            box = self._box
        if changed:
            self._notify(field_name, changed)
            self._request_repaint(box)
        return changed

    @staticmethod
    def _setter(field_name: str, value: Any) -> Callable[[Displayable], bool]:
        def mutation(d: Displayable) -> bool:
            if getattr(d, field_name) == value:
                return False
            setattr(d, field_name, value)
            return True
        return mutation

    def set_locked(self, locked: bool) -> List[Displayable]:
        return self._apply_with_checkpoint("locked", self._setter("locked", bool(locked)))

    def set_visible(self, visible: bool) -> List[Displayable]:
        """Shows or hides the selected entities. Returns those whose state changed."""
        return self._apply_with_checkpoint("visible", self._setter("visible", bool(visible)))

    def set_color(self, color: Sequence[int]) -> List[Displayable]:
        rgb = tuple(int(c) for c in color)
        if len(rgb) != 3 or any(c < 0 or c > 255 for c in rgb):
            logger.warning(f"Invalid color {color!r}, expected three values in 0..255.")
            return []
        return self._apply_with_checkpoint("color", self._setter("color", rgb))

    def set_alpha(self, alpha: float) -> List[Displayable]:
        if not 0.0 <= alpha <= 1.0:
            logger.warning(f"Invalid alpha {alpha}, expected a value in [0, 1].")
            return []
        return self._apply_with_checkpoint("alpha", self._setter("alpha", float(alpha)))
