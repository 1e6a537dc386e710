"""
transform_editor.py

Interactive affine transform editing of a selection.

The editor turns pointer gestures (press, drags, release) into affine
transforms applied to the selection's affected entities:

- dragging inside the selection box translates,
- dragging one of the eight box handles scales about the opposite handle,
- dragging the rotation handle rotates about the pivot,
- dragging the pivot moves the center of rotation and scaling,
- up to three free-form control points drive a point-match model
  (translation, similarity or affine) fitted on every drag.

Each gesture that changes geometry becomes one step of the editor's own
history, and a before/after pair of the document history. The transform
accumulated over the whole editing session can be propagated to other layers
as long as no undo or redo broke the chain.
"""

import enum
import math
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .affine_transformations import (
    identity_matrix, translation_matrix, rotation_matrix_deg, scale_matrix,
    difference_transform, rotation_angle_between, get_transformed_point
)
from .collaborators import HeadlessInteraction, Interaction, RepaintScheduler
from .editor_common import BoundingBox
from .editor_config import EditorConfig
from .editor_entities import Displayable, Layer
from .history import History
from .history_steps import TransformSnapshot
from .point_models import PointMatch, PointModel, make_matches, model_for_point_count
from .selection import Selection

logger = logging.getLogger(__name__)


class Handle(enum.Enum):
    """On-screen handles. Box handles carry the (x, y) direction of the edges they move."""
    NW = (-1, -1)
    N = (0, -1)
    NE = (1, -1)
    E = (1, 0)
    SE = (1, 1)
    S = (0, 1)
    SW = (-1, 1)
    W = (-1, 0)
    ROTATION = "rotation"
    PIVOT = "pivot"

    @property
    def is_box(self) -> bool:
        return isinstance(self.value, tuple)

    @property
    def edges(self) -> Tuple[int, int]:
        if not self.is_box:
            raise ValueError(f"{self.name} is not a box handle")
        return self.value


BOX_HANDLES = tuple(h for h in Handle if h.is_box)
# Hit-test order: the pivot wins over everything, then the rotation handle
PICK_ORDER = (Handle.PIVOT, Handle.ROTATION) + tuple(reversed(BOX_HANDLES))


class Modifier(enum.Flag):
    NONE = 0
    SHIFT = enum.auto()
    CONTROL = enum.auto()


@dataclass
class ControlPoint:
    """A free-form landmark in world coordinates."""
    x: float
    y: float

    def is_near(self, x: float, y: float, magnification: float, radius_px: float) -> bool:
        """Proximity in screen space: closer than radius_px pixels at the given zoom."""
        dx = magnification * (x - self.x)
        dy = magnification * (y - self.y)
        return dx * dx + dy * dy < radius_px * radius_px

    def translate(self, dx: float, dy: float) -> None:
        self.x += dx
        self.y += dy

    def transform(self, matrix: np.ndarray) -> None:
        self.x, self.y = get_transformed_point((self.x, self.y), matrix)


class TransformEditor:

    def __init__(self, selection: Selection, repaint: Optional[RepaintScheduler] = None,
                 interaction: Optional[Interaction] = None, config: Optional[EditorConfig] = None):
        self.selection = selection
        self.document = selection.document
        self.repaint = repaint if repaint is not None else selection.repaint
        self.interaction = interaction or selection.interaction or HeadlessInteraction()
        self.config = config or selection.config

        self._box: Optional[BoundingBox] = None
        self._pivot: Tuple[float, float] = (0.0, 0.0)
        self._magnification: float = 1.0

        # Gesture state
        self._grabbed: Optional[Handle] = None
        self._grabbed_point: Optional[ControlPoint] = None
        self._dragging = False
        self._rotating = False
        self._gesture_open = False
        self._gesture_changed = False
        self._doc_before: Optional[TransformSnapshot] = None
        # Editor state at the start of the open gesture, restored on failure
        self._gesture_effective: Optional[np.ndarray] = None
        self._gesture_points: List[Tuple[float, float]] = []
        self._raw_angle = 0.0
        self._applied_angle = 0.0
        self._pointer = (0.0, 0.0)
        self._pointer_old = (0.0, 0.0)

        # Free-form control points
        self._control_points: List[ControlPoint] = []
        self._matches: Optional[List[PointMatch]] = None
        self._model: Optional[PointModel] = None
        self._initial_affines: Dict[Displayable, np.ndarray] = {}

        self.reset_box()
        self.center_pivot()
        self._accumulated: Optional[np.ndarray] = identity_matrix()
        self.history: History[TransformSnapshot] = History()
        self.history.append(self._snapshot())
        logger.info(f"Transform editor started on {self.selection.n_linked} entities.")

    # --- State queries ---

    def _affected(self) -> Set[Displayable]:
        return self.selection.get_affected()

    def _snapshot(self) -> TransformSnapshot:
        return TransformSnapshot(self._affected())

    @property
    def box(self) -> Optional[BoundingBox]:
        return self._box

    @property
    def pivot(self) -> Tuple[float, float]:
        return self._pivot

    @property
    def accumulated_transform(self) -> Optional[np.ndarray]:
        """Transform accumulated since the editor started, or None once undo/redo was used."""
        return None if self._accumulated is None else self._accumulated.copy()

    @property
    def control_points(self) -> List[Tuple[float, float]]:
        return [(p.x, p.y) for p in self._control_points]

    @property
    def model(self) -> Optional[PointModel]:
        return self._model

    def is_dragging(self) -> bool:
        return self._dragging

    def reset_box(self) -> None:
        """Recomputes the box from the selected entities."""
        self.selection.reset_box()
        self._box = self.selection.get_box()

    def center_pivot(self) -> None:
        if self._box is not None and self._box.is_valid():
            self._pivot = self._box.center

    def set_pivot(self, x: float, y: float) -> None:
        """The pivot may be placed anywhere, also outside the box."""
        self._pivot = (float(x), float(y))

    def handle_position(self, handle: Handle) -> Optional[Tuple[float, float]]:
        """World position of a handle at the current magnification."""
        if handle is Handle.PIVOT:
            return self._pivot
        if handle is Handle.ROTATION:
            return (self._pivot[0] + self.config.rotation_handle_offset_px / self._magnification, self._pivot[1])
        if self._box is None:
            return None
        ex, ey = handle.edges
        cx, cy = self._box.center
        x = {-1: self._box.min_x, 0: cx, 1: self._box.max_x}[ex]
        y = {-1: self._box.min_y, 0: cy, 1: self._box.max_y}[ey]
        return (x, y)

    def _handle_contains(self, handle: Handle, x: float, y: float, radius: float) -> bool:
        position = self.handle_position(handle)
        if position is None:
            return False
        if handle is Handle.PIVOT:
            radius *= self.config.pivot_radius_factor
        return abs(position[0] - x) <= radius and abs(position[1] - y) <= radius

    def get_repaint_bounds(self) -> Optional[BoundingBox]:
        """Linked box of the selection plus the area covered by the pivot marker."""
        marker = 15.0 / self._magnification
        pivot_box = BoundingBox(self._pivot[0] - marker, self._pivot[1] - marker,
                                self._pivot[0] + marker, self._pivot[1] + marker)
        linked = self.selection.get_linked_box()
        return pivot_box.union(linked) if linked is not None else pivot_box

    def _request_repaint(self, previous: Optional[BoundingBox] = None) -> None:
        if self.repaint is None:
            return
        region = self.get_repaint_bounds()
        if region is not None:
            region = region.union(previous)
            self.repaint.request_repaint(region.expand(self.config.selection_padding))

    # --- Steps ---

    def _begin_step(self) -> None:
        """Opens the undo step of a gesture, once per gesture."""
        if self._gesture_open:
            return
        self._gesture_open = True
        self._gesture_changed = False
        self._gesture_effective = self._effective_transform()
        self._gesture_points = self.control_points
        self._doc_before = self.document.add_transform_step(self._affected())

    def _end_step(self) -> None:
        if not self._gesture_open:
            return
        self._gesture_open = False
        if self._gesture_changed:
            affected = self._affected()
            # Clips the redo future only if the gesture left a different state
            self.history.append(TransformSnapshot(affected))
            self.document.add_transform_step(affected)
        self._gesture_changed = False
        self._doc_before = None

    def _abort_step(self) -> None:
        """Restores the state the gesture started from."""
        if self._doc_before is not None:
            self.document.rollback(self._doc_before)
        if self._gesture_open:
            self._accumulated = self._gesture_effective
            for point, (x, y) in zip(self._control_points, self._gesture_points):
                point.x, point.y = x, y
        self._gesture_effective = None
        self._gesture_points = []
        self._gesture_open = False
        self._gesture_changed = False
        self._doc_before = None
        self._model = None
        self._raw_angle = 0.0
        self._applied_angle = 0.0
        self.reset_box()

    # --- Applying transforms ---

    def _effective_transform(self) -> Optional[np.ndarray]:
        """Accumulated transform with the running control-point fit on top."""
        if self._accumulated is None:
            return None
        if self._model is None:
            return self._accumulated.copy()
        return self._model.create_affine() @ self._accumulated

    def _settle_model(self) -> None:
        """Folds the fitted control-point model into the accumulated transform and drops it."""
        if self._model is not None and self._accumulated is not None:
            self._accumulated = self._model.create_affine() @ self._accumulated
        self._model = None

    def _apply_affine(self, at: np.ndarray, reset_box: bool = True) -> bool:
        self._begin_step()
        self._settle_model()
        if not self.selection.preconcatenate(at):
            return False
        if self._accumulated is not None:
            self._accumulated = at @ self._accumulated
        self.fix_affine_points(at)
        self._gesture_changed = True
        if reset_box:
            self.reset_box()
        return True

    def _transform(self, at: np.ndarray) -> bool:
        """Applies one programmatic transform, as its own step unless a gesture is open."""
        if self.selection.is_empty():
            logger.warning("Cannot transform an empty selection.")
            return False
        owns_step = not self._gesture_open
        previous = self.get_repaint_bounds()
        try:
            done = self._apply_affine(at)
        except Exception:
            logger.exception("Transform failed, restoring previous state.")
            self._abort_step()
            return False
        if owns_step:
            self._end_step()
        self._request_repaint(previous)
        return done

    def translate(self, dx: float, dy: float) -> bool:
        """Translates the affected entities. The pivot stays where it is."""
        return self._transform(translation_matrix(dx, dy))

    def rotate(self, angle_deg: float) -> bool:
        """Rotates the affected entities about the pivot."""
        return self._transform(rotation_matrix_deg(angle_deg, *self._pivot))

    def scale(self, sx: float, sy: float) -> bool:
        """Scales the affected entities about the pivot."""
        if sx == 0 or sy == 0:
            self.interaction.show_message("Cannot scale to 0.")
            return False
        return self._transform(scale_matrix(sx, sy, *self._pivot))

    # --- Pointer events ---

    def mouse_pressed(self, x: float, y: float, magnification: float = 1.0,
                      modifiers: Modifier = Modifier.NONE) -> None:
        self._magnification = magnification if magnification > 0 else 1.0
        self._grabbed = None
        self._grabbed_point = None
        self._dragging = False
        self._rotating = False
        self._raw_angle = 0.0
        self._applied_angle = 0.0

        if self.selection.is_locked():
            logger.info("Selection is locked, ignoring gesture.")
            return

        if Modifier.SHIFT in modifiers:
            if Modifier.CONTROL in modifiers:
                self.remove_control_point(x, y)
            else:
                self.add_control_point(x, y)
            return
        point = self._find_control_point(x, y)
        if point is not None:
            self._grabbed_point = point
            return

        radius = max(1.0, self.config.handle_radius_px / self._magnification)
        for handle in PICK_ORDER:
            if self._handle_contains(handle, x, y, radius):
                self._grabbed = handle
                self._rotating = handle is Handle.ROTATION
                return

        # No handle grabbed: drag the whole selection if pressed inside the box
        self._dragging = self._box is not None and self._box.contains(x, y)

    def mouse_dragged(self, x_d: float, y_d: float, x_d_old: float, y_d_old: float,
                      modifiers: Modifier = Modifier.NONE) -> None:
        self._pointer = (x_d, y_d)
        self._pointer_old = (x_d_old, y_d_old)
        previous = self.get_repaint_bounds()
        try:
            self._exec_drag(x_d - x_d_old, y_d - y_d_old, modifiers)
        except Exception:
            logger.exception("Drag failed, restoring the state before the gesture.")
            self._abort_step()
        self._request_repaint(previous)

    def mouse_released(self, x_p: float, y_p: float, x_d: float, y_d: float,
                       x_r: float, y_r: float, modifiers: Modifier = Modifier.NONE) -> None:
        if x_r != x_d or y_r != y_d:
            self.mouse_dragged(x_r, y_r, x_d, y_d, modifiers)
        self._end_step()
        self.reset_box()
        if (self._grabbed is not None and self._grabbed.is_box) or self._dragging:
            self.center_pivot()
        self._grabbed = None
        self._grabbed_point = None
        self._dragging = False
        self._rotating = False
        self._request_repaint()

    def _exec_drag(self, dx: float, dy: float, modifiers: Modifier) -> None:
        if dx == 0 and dy == 0:
            return
        if self._grabbed_point is not None:
            self._begin_step()
            if self._model is None:
                # Dropped by a box or rotation transform since the last fit
                self.initialize_model()
            self._grabbed_point.translate(dx, dy)
            self._free_affine(self._grabbed_point)
            return
        if self._grabbed is Handle.PIVOT:
            self._pivot = (self._pivot[0] + dx, self._pivot[1] + dy)
        elif self._grabbed is Handle.ROTATION:
            self._drag_rotation(modifiers)
        elif self._grabbed is not None:
            self._drag_box_handle(self._grabbed, dx, dy)
        elif self._dragging:
            if self._apply_affine(translation_matrix(dx, dy), reset_box=False):
                self._box = self._box.translated(dx, dy)

    def _drag_box_handle(self, handle: Handle, dx: float, dy: float) -> bool:
        """
        Moves the edges of the box that the handle controls and scales the
        selection about the opposite handle. Rejected, not clamped, if a moving
        edge would reach or cross the opposite edge.
        """
        box = self._box
        if box is None:
            return False
        old_width, old_height = box.width, box.height
        ex, ey = handle.edges
        # An axis without extent cannot scale, the handle moves along the other one
        if old_width == 0:
            ex = 0
        if old_height == 0:
            ey = 0
        if ex == 0 and ey == 0:
            logger.debug(f"Cannot scale a {old_width}x{old_height} box with handle {handle.name}.")
            return False
        left, top, right, bottom = box.min_x, box.min_y, box.max_x, box.max_y
        if ex < 0:
            if left + dx >= right:
                return False
            left += dx
        elif ex > 0:
            if right + dx <= left:
                return False
            right += dx
        if ey < 0:
            if top + dy >= bottom:
                return False
            top += dy
        elif ey > 0:
            if bottom + dy <= top:
                return False
            bottom += dy
        px = (right - left) / old_width if ex != 0 else 1.0
        py = (bottom - top) / old_height if ey != 0 else 1.0
        # The anchor is the opposite handle
        anchor = self.handle_position(Handle((-ex, -ey)))
        at = scale_matrix(px, py, anchor[0], anchor[1])
        if not self._apply_affine(at, reset_box=False):
            return False
        self._box = BoundingBox(left, top, right, bottom)
        return True

    def _drag_rotation(self, modifiers: Modifier) -> None:
        delta = rotation_angle_between(self._pivot, self._pointer_old, self._pointer)
        if delta is None:
            logger.debug("Rotation handle: ignoring undefined angle.")
            return
        self._raw_angle += math.degrees(delta)
        target = self._raw_angle
        if Modifier.CONTROL in modifiers:
            increment = 1.0 if Modifier.SHIFT in modifiers else self.config.rotation_snap_deg
            sign = -1.0 if target < 0 else 1.0
            target = sign * math.floor(abs(target) / increment + 0.5) * increment
            logger.debug(f"Angle: {target} degrees")
        step = target - self._applied_angle
        if step == 0:
            return
        if self._apply_affine(rotation_matrix_deg(step, *self._pivot)):
            self._applied_angle = target

    # --- Free-form control points ---

    def _find_control_point(self, x: float, y: float) -> Optional[ControlPoint]:
        for point in self._control_points:
            if point.is_near(x, y, self._magnification, self.config.control_point_radius_px):
                return point
        return None

    def add_control_point(self, x: float, y: float) -> bool:
        if len(self._control_points) >= self.config.max_control_points:
            logger.info(f"Already {len(self._control_points)} control points, not adding more.")
            return False
        self._control_points.append(ControlPoint(float(x), float(y)))
        self.initialize_model()
        logger.debug(f"Added control point ({x}, {y}), {len(self._control_points)} in use.")
        return True

    def remove_control_point(self, x: float, y: float) -> bool:
        point = self._find_control_point(x, y)
        if point is None:
            return False
        self._control_points.remove(point)
        if not self._control_points:
            self._settle_model()
            self._matches = None
            self._initial_affines = {}
        else:
            self.initialize_model()
        logger.debug(f"Removed control point, {len(self._control_points)} left.")
        return True

    def initialize_model(self) -> None:
        """Starts a fresh fit from the current transforms and control point positions."""
        self._settle_model()
        self._initial_affines = {d: d.get_transform() for d in self._affected()}
        self._model = model_for_point_count(len(self._control_points))
        if self._model is None:
            self._matches = None
            return
        self._matches = make_matches([(p.x, p.y) for p in self._control_points])

    def _free_affine(self, point: ControlPoint) -> None:
        index = self._control_points.index(point)
        self._matches[index].q = (point.x, point.y)
        if not self._model.fit(self._matches):
            logger.debug("Control point fit failed, keeping the previous fit.")
        model_affine = self._model.create_affine()
        self._begin_step()
        self.document.apply_transforms({d: model_affine @ initial for d, initial in self._initial_affines.items()})
        self._gesture_changed = True
        self.reset_box()

    def fix_affine_points(self, at: np.ndarray) -> None:
        """Moves the control points along with content transformed by `at`."""
        if not self._control_points:
            return
        for point in self._control_points:
            point.transform(at)
        # Reinitialized on the next control point drag
        self._model = None

    # --- Undo / redo ---

    def _step_between(self, step: Optional[TransformSnapshot], reference: Optional[Displayable],
                      reference_before: Optional[np.ndarray]) -> None:
        step.apply()
        self.reset_box()
        if reference is None or reference_before is None:
            self._model = None
            return
        target = step.get(reference)
        diff = difference_transform(target, reference_before) if target is not None else None
        if diff is None:
            logger.debug("Could not compute the transform between steps, control points not moved.")
            self._model = None
            return
        self.fix_affine_points(diff)

    def undo_one_step(self) -> bool:
        with self.history.lock:
            current = self.history.get_current()
            if current is None:
                return False
            if self.history.index_at_end():
                now = self._snapshot()
                if not now.is_identical(current):
                    # Record the live state so that redo can come back to it
                    self.history.append(now)
            reference = next(iter(self.history.get_current().entities), None)
            reference_before = reference.get_transform() if reference is not None else None
            step = self.history.undo_one_step()
            if step is None:
                logger.info("Nothing to undo.")
                return False
            # Undo breaks the linear accumulation of transforms
            self._accumulated = None
            self._step_between(step, reference, reference_before)
        self._request_repaint()
        logger.info(f"Undid one step, editor history index {self.history.index}")
        return True

    def redo_one_step(self) -> bool:
        with self.history.lock:
            current = self.history.get_current()
            if current is None:
                return False
            reference = next(iter(current.entities), None)
            reference_before = reference.get_transform() if reference is not None else None
            step = self.history.redo_one_step()
            if step is None:
                logger.info("Nothing to redo.")
                return False
            self._accumulated = None
            self._step_between(step, reference, reference_before)
        self._request_repaint()
        logger.info(f"Redid one step, editor history index {self.history.index}")
        return True

    # --- Propagation ---

    def apply_and_propagate(self, layers: Iterable[Layer]) -> bool:
        """
        Applies the accumulated transform to every entity painting in the given
        layers, skipping the origin layer and entities already transformed.
        Recorded as one document step.
        """
        if self._accumulated is None:
            self.interaction.show_message("Cannot apply to other layers: undo/redo was used.")
            return False
        layers = [l for l in layers if l is not None]
        if not layers:
            self.interaction.show_message("No layers to apply to!")
            return False
        origin = self.selection.get_layer()
        affected = self._affected()
        check_layers = layers + ([origin] if origin is not None and origin not in layers else [])
        if self.document.are_there_layer_cross_links(check_layers) or self.document.has_cross_layer_links(affected):
            if self.interaction.is_interactive():
                if not self.interaction.confirm(
                        "Warning!",
                        "Some objects are linked!\nThe transformation would alter interrelationships.\nProceed anyway?"):
                    logger.info("Propagation to other layers cancelled.")
                    return False
            else:
                self.interaction.show_message(
                    "Can't apply: some entities are linked across layers. Unlink them first.")
                return False

        effective = self._effective_transform()
        target_layers = [l for l in layers if l != origin]
        already = set(affected)
        if origin is not None:
            already.update(self.document.get_entities_on_layer(origin))
        targets = [d for d in self.document.entities_painting_at(target_layers) if d not in already]
        recorded = self.document.entities_painting_at(check_layers)

        with self.selection.lock:
            before = self.document.add_transform_step(recorded)
            try:
                self.document.preconcatenate(effective, targets)
                self.document.add_transform_step(recorded)
            except Exception:
                logger.exception("Propagation failed, rolling back.")
                self.document.rollback(before)
                return False
        logger.info(f"Propagated transform to {len(targets)} entities in {len(target_layers)} layer(s).")
        if self.repaint is not None:
            self.repaint.request_repaint(None)
        return True

    # --- End of editing ---

    def apply(self) -> bool:
        """Ends editing. Transforms are left as they are; dependents are told they settled."""
        for d in self._affected():
            d.set_transform(d.get_transform())
        logger.info("Transform editor applied.")
        return True

    def cancel(self) -> bool:
        """Restores the state from when the editor started."""
        first = self.history.get(0)
        if first is not None:
            first.apply()
            self.reset_box()
            self.document.add_transform_step(first.entities)
        self._control_points = []
        self._matches = None
        self._model = None
        self._accumulated = None
        self._request_repaint()
        logger.info("Transform editor cancelled.")
        return True
