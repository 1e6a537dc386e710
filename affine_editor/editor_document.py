"""
editor_document.py

Defines the EditorDocument class, the central manager of a multi-layer document.
It holds registries for layers and displayable entities and manages the
relationships between them (layer assignment, undirected links, extra layers an
entity paints into) in dedicated internal registries.

It also owns the document-level undo history: whole-set snapshots recorded
around every checkpointed edit, so that edits made in an editing session can
still be undone after the session ends.
"""

import uuid
import logging
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type, TypeVar, Union

import numpy as np

from .affine_transformations import identity_matrix
from .editor_common import BoundingBox, CheckpointError, DocumentConfigurationError, TransformationError
from .editor_entities import EditorEntity, Layer, Displayable, Patch, Polyline
from .history import History, Step
from .history_steps import TransformSnapshot, PropertySnapshot

logger = logging.getLogger(__name__)

# --- Type Hinting ---
EntityType = TypeVar('EntityType', bound=EditorEntity)
# Type for identifiers (UUID, user identifier string, or entity object itself)
Identifiable = Union[str, uuid.UUID, EditorEntity]
Listener = Callable[[str, List[Displayable]], None]


class EditorDocument:
    """
    Manages all entities and their relationships within a document.
    Acts as the central registry and source of truth for the document structure.
    """
    def __init__(self, name: str = "Untitled"):
        self.name: str = name

        # --- Entity Registries ---
        self._layers: Dict[uuid.UUID, Layer] = {}
        self._entities: Dict[uuid.UUID, Displayable] = {}

        # --- Ordering ---
        self._layer_order: List[uuid.UUID] = []

        # --- Relationship Registries ---
        # Entity <-> Layer
        self._entity_layer_assignment: Dict[uuid.UUID, uuid.UUID] = {} # Entity UUID -> Layer UUID
        self._layer_members: Dict[uuid.UUID, List[uuid.UUID]] = {} # Layer UUID -> ordered Entity UUIDs
        # Entity <-> Entity (undirected, cycles allowed)
        self._links: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        # Entity -> Layers it renders into besides its own
        self._paints_at: Dict[uuid.UUID, Set[uuid.UUID]] = {}

        # --- Lookup and State ---
        self._identifier_registry: Dict[str, uuid.UUID] = {}
        self.history: History[Step] = History()
        self._listeners: List[Listener] = []

        logger.info(f"Initialized EditorDocument: {self.name}")

    # --- Internal Helper: Identifier Resolution ---
    def _resolve_identifier(self, identifier: Optional[Identifiable],
                            expected_type: Optional[Type[EntityType]] = None) -> Optional[uuid.UUID]:
        """Resolves a string, UUID, or entity object to its internal UUID."""
        if identifier is None:
            return None

        if isinstance(identifier, uuid.UUID):
            target_uuid = identifier
        elif isinstance(identifier, str):
            target_uuid = self._identifier_registry.get(identifier)
            if target_uuid is None:
                logger.debug(f"Identifier string '{identifier}' not found in registry.")
                return None
        elif isinstance(identifier, EditorEntity):
            target_uuid = identifier.internal_id
        else:
            logger.error(f"Invalid identifier type: {type(identifier)}")
            return None

        entity = self._get_entity_by_uuid(target_uuid)
        if entity is None:
            logger.debug(f"Identifier '{identifier}' resolved to UUID {target_uuid}, but entity not found in registries.")
            return None
        if expected_type and not isinstance(entity, expected_type):
            logger.debug(f"Identifier '{identifier}' resolved to entity of type {type(entity)}, but expected {expected_type}.")
            return None
        return target_uuid

    def _get_entity_by_uuid(self, entity_uuid: uuid.UUID) -> Optional[EditorEntity]:
        return self._entities.get(entity_uuid) or self._layers.get(entity_uuid)

    # --- Internal Helper: Entity Registration ---
    def _register_entity(self, entity: EditorEntity) -> bool:
        """Adds an entity to its registry and the identifier lookup."""
        if not isinstance(entity, (Layer, Displayable)):
            logger.error(f"Attempted to register unsupported object: {entity}")
            return False
        if entity.internal_id in self._entities or entity.internal_id in self._layers:
            logger.warning(f"Entity with UUID {entity.internal_id} ('{entity.user_identifier}') already registered.")
            return False

        existing_uuid = self._identifier_registry.get(entity.user_identifier)
        if existing_uuid and existing_uuid != entity.internal_id:
            logger.error(f"User identifier '{entity.user_identifier}' is already used by entity {existing_uuid}. Cannot register {entity.internal_id}.")
            return False
        self._identifier_registry[entity.user_identifier] = entity.internal_id

        if isinstance(entity, Layer):
            self._layers[entity.internal_id] = entity
        else:
            self._entities[entity.internal_id] = entity
            entity.set_document_link(self)

        logger.debug(f"Registered {type(entity).__name__} '{entity.user_identifier}' ({entity.internal_id})")
        return True

    # --- Public API: Getters ---

    def get_entity(self, identifier: Identifiable) -> Optional[Displayable]:
        entity_uuid = self._resolve_identifier(identifier, Displayable)
        return self._entities.get(entity_uuid) if entity_uuid else None

    def get_layer(self, identifier: Identifiable) -> Optional[Layer]:
        layer_uuid = self._resolve_identifier(identifier, Layer)
        return self._layers.get(layer_uuid) if layer_uuid else None

    def list_layers(self) -> List[Layer]:
        """Returns the layers in their defined order."""
        return [self._layers[uid] for uid in self._layer_order if uid in self._layers]

    def list_entities(self) -> List[Displayable]:
        """All entities, layer by layer in layer order."""
        result = []
        for layer_uuid in self._layer_order:
            result.extend(self._entities[eid] for eid in self._layer_members.get(layer_uuid, []))
        return result

    def get_entities_on_layer(self, layer_identifier: Identifiable) -> List[Displayable]:
        """Entities structurally belonging to a layer, in insertion order."""
        layer_uuid = self._resolve_identifier(layer_identifier, Layer)
        if not layer_uuid:
            return []
        return [self._entities[eid] for eid in self._layer_members.get(layer_uuid, []) if eid in self._entities]

    def get_layer_of_entity(self, entity_identifier: Identifiable) -> Optional[Layer]:
        entity_uuid = self._resolve_identifier(entity_identifier, Displayable)
        if not entity_uuid:
            return None
        layer_uuid = self._entity_layer_assignment.get(entity_uuid)
        return self._layers.get(layer_uuid) if layer_uuid else None

    def index_of(self, entity_identifier: Identifiable) -> int:
        """Position of an entity within its layer, -1 if unknown."""
        entity_uuid = self._resolve_identifier(entity_identifier, Displayable)
        layer_uuid = self._entity_layer_assignment.get(entity_uuid) if entity_uuid else None
        if not layer_uuid:
            return -1
        return self._layer_members[layer_uuid].index(entity_uuid)

    def sort_key(self, entity: Displayable) -> Tuple[int, int]:
        """Orders entities by layer order, then by position within the layer."""
        layer_uuid = self._entity_layer_assignment.get(entity.internal_id)
        layer_pos = self._layer_order.index(layer_uuid) if layer_uuid in self._layer_order else len(self._layer_order)
        return layer_pos, self.index_of(entity)

    # --- Public API: Entity Creation ---

    def add_layer(self, identifier: str = "", z: float = 0.0, thickness: float = 1.0) -> Optional[Layer]:
        """Creates a layer and appends it to the layer order."""
        existing_uuid = self._resolve_identifier(identifier, Layer) if identifier else None
        if existing_uuid:
            layer = self._layers[existing_uuid]
            logger.info(f"Updating existing layer '{identifier}' ({existing_uuid})")
            layer.z = z
            layer.thickness = thickness
            return layer
        layer = Layer(user_identifier=identifier, z=z, thickness=thickness)
        if not self._register_entity(layer):
            return None
        self._layer_order.append(layer.internal_id)
        self._layer_members[layer.internal_id] = []
        logger.info(f"Added new layer '{layer.user_identifier}' ({layer.internal_id})")
        return layer

    def add_entity(self, entity: Displayable, layer_identifier: Identifiable) -> bool:
        """Registers an already constructed entity on a layer."""
        layer = self.get_layer(layer_identifier)
        if not layer:
            logger.error(f"Layer identifier '{layer_identifier}' not found or invalid.")
            return False
        if not self._register_entity(entity):
            return False
        self._entity_layer_assignment[entity.internal_id] = layer.internal_id
        self._layer_members[layer.internal_id].append(entity.internal_id)
        self._links[entity.internal_id] = set()
        logger.info(f"Added {type(entity).__name__} '{entity.user_identifier}' ({entity.internal_id}) to layer '{layer.user_identifier}'")
        self.notify("added", [entity])
        return True

    def _add_displayable_internal(self, cls: Type[Displayable], layer_identifier: Identifiable,
                                  identifier: Optional[str], transform: Optional[np.ndarray],
                                  **kwargs) -> Optional[Displayable]:
        entity_id = identifier if identifier else f"{cls.__name__}_{uuid.uuid4().hex[:6]}"
        try:
            entity = cls(user_identifier=entity_id,
                         transform=identity_matrix() if transform is None else np.array(transform, dtype=float),
                         **kwargs)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to instantiate {cls.__name__} with identifier '{entity_id}': {e}")
            return None
        return entity if self.add_entity(entity, layer_identifier) else None

    def add_patch(self, layer: Identifiable, width: float, height: float,
                  transform: Optional[np.ndarray] = None, identifier: Optional[str] = None,
                  **kwargs) -> Optional[Patch]:
        return self._add_displayable_internal(Patch, layer, identifier, transform,
                                              width=width, height=height, **kwargs) # type: ignore

    def add_polyline(self, layer: Identifiable, points: Sequence[Tuple[float, float]], closed: bool = False,
                     transform: Optional[np.ndarray] = None, identifier: Optional[str] = None,
                     **kwargs) -> Optional[Polyline]:
        return self._add_displayable_internal(Polyline, layer, identifier, transform,
                                              relative_points=list(points), closed=closed, **kwargs) # type: ignore

    def assign_entity_to_layer(self, entity_identifier: Identifiable, layer_identifier: Identifiable) -> bool:
        """Moves an entity to another layer, appending it there."""
        entity_uuid = self._resolve_identifier(entity_identifier, Displayable)
        layer_uuid = self._resolve_identifier(layer_identifier, Layer)
        if not entity_uuid or not layer_uuid:
            logger.error(f"Cannot assign entity '{entity_identifier}' to layer '{layer_identifier}': One or both not found.")
            return False
        old_layer_uuid = self._entity_layer_assignment.get(entity_uuid)
        if old_layer_uuid == layer_uuid:
            return True
        if old_layer_uuid:
            self._layer_members[old_layer_uuid].remove(entity_uuid)
        self._entity_layer_assignment[entity_uuid] = layer_uuid
        self._layer_members[layer_uuid].append(entity_uuid)
        logger.debug(f"Assigned entity {entity_uuid} to layer {layer_uuid}")
        return True

    def remove_entity(self, identifier: Identifiable) -> bool:
        """Removes an entity, its links and every history record of it."""
        entity_uuid = self._resolve_identifier(identifier, Displayable)
        if not entity_uuid:
            logger.error(f"Entity '{identifier}' not found for removal.")
            return False
        self.unlink_all(entity_uuid)
        entity = self._entities.pop(entity_uuid)
        self._links.pop(entity_uuid, None)
        self._paints_at.pop(entity_uuid, None)
        layer_uuid = self._entity_layer_assignment.pop(entity_uuid, None)
        if layer_uuid:
            self._layer_members[layer_uuid].remove(entity_uuid)
        if self._identifier_registry.get(entity.user_identifier) == entity_uuid:
            self._identifier_registry.pop(entity.user_identifier, None)
        self.history.remove(entity_uuid)
        entity.set_document_link(None)
        logger.info(f"Removed {type(entity).__name__} '{entity.user_identifier}' ({entity_uuid})")
        self.notify("removed", [entity])
        return True

    # --- Public API: Links ---

    def link(self, a: Identifiable, b: Identifiable) -> bool:
        """Links two entities. Links are symmetric; cycles are allowed."""
        a_uuid = self._resolve_identifier(a, Displayable)
        b_uuid = self._resolve_identifier(b, Displayable)
        if not a_uuid or not b_uuid:
            logger.error(f"Cannot link '{a}' and '{b}': One or both not found.")
            return False
        if a_uuid == b_uuid:
            raise DocumentConfigurationError(f"Cannot link entity {a_uuid} to itself.")
        self._links[a_uuid].add(b_uuid)
        self._links[b_uuid].add(a_uuid)
        logger.debug(f"Linked {a_uuid} <-> {b_uuid}")
        self.notify("link", [self._entities[a_uuid], self._entities[b_uuid]])
        return True

    def unlink(self, a: Identifiable, b: Identifiable) -> bool:
        a_uuid = self._resolve_identifier(a, Displayable)
        b_uuid = self._resolve_identifier(b, Displayable)
        if not a_uuid or not b_uuid or b_uuid not in self._links.get(a_uuid, set()):
            logger.warning(f"Cannot unlink '{a}' and '{b}': not linked.")
            return False
        self._links[a_uuid].discard(b_uuid)
        self._links[b_uuid].discard(a_uuid)
        logger.debug(f"Unlinked {a_uuid} <-> {b_uuid}")
        self.notify("link", [self._entities[a_uuid], self._entities[b_uuid]])
        return True

    def unlink_all(self, a: Identifiable) -> int:
        a_uuid = self._resolve_identifier(a, Displayable)
        if not a_uuid:
            return 0
        neighbors = list(self._links.get(a_uuid, set()))
        for n in neighbors:
            self._links[n].discard(a_uuid)
        self._links[a_uuid] = set()
        if neighbors:
            self.notify("link", [self._entities[a_uuid]] + [self._entities[n] for n in neighbors if n in self._entities])
        return len(neighbors)

    def get_linked(self, a: Identifiable) -> List[Displayable]:
        """Direct link neighbors of an entity."""
        a_uuid = self._resolve_identifier(a, Displayable)
        if not a_uuid:
            return []
        return [self._entities[n] for n in self._links.get(a_uuid, set())]

    def is_linked(self, a: Identifiable) -> bool:
        a_uuid = self._resolve_identifier(a, Displayable)
        return bool(a_uuid and self._links.get(a_uuid))

    def get_linked_group(self, a: Identifiable) -> Set[Displayable]:
        """Closure of an entity under the link relation, the entity included."""
        a_uuid = self._resolve_identifier(a, Displayable)
        if not a_uuid:
            return set()
        seen = {a_uuid}
        queue = deque([a_uuid])
        while queue:
            current = queue.popleft()
            for n in self._links.get(current, ()):
                if n not in seen:
                    seen.add(n)
                    queue.append(n)
        return {self._entities[uid] for uid in seen}

    # --- Public API: Layer span ---

    def set_paints_at(self, entity: Identifiable, layers: Iterable[Identifiable]) -> bool:
        """Declares the extra layers an entity renders into besides its own."""
        entity_uuid = self._resolve_identifier(entity, Displayable)
        if not entity_uuid:
            logger.error(f"Entity '{entity}' not found for setting paint layers.")
            return False
        layer_uuids = set()
        for layer in layers:
            layer_uuid = self._resolve_identifier(layer, Layer)
            if not layer_uuid:
                raise DocumentConfigurationError(f"Unknown layer '{layer}' for entity '{entity}'.")
            layer_uuids.add(layer_uuid)
        layer_uuids.discard(self._entity_layer_assignment.get(entity_uuid))
        self._paints_at[entity_uuid] = layer_uuids
        return True

    def get_paint_layers(self, entity: Identifiable) -> List[Layer]:
        entity_uuid = self._resolve_identifier(entity, Displayable)
        if not entity_uuid:
            return []
        extra = self._paints_at.get(entity_uuid, set())
        return [self._layers[uid] for uid in self._layer_order if uid in extra]

    def entities_painting_at(self, layers: Iterable[Identifiable]) -> List[Displayable]:
        """Members of the given layers plus entities that merely render into them."""
        layer_uuids = [uid for uid in (self._resolve_identifier(l, Layer) for l in layers) if uid]
        result: List[Displayable] = []
        seen: Set[uuid.UUID] = set()
        for layer_uuid in layer_uuids:
            for eid in self._layer_members.get(layer_uuid, []):
                if eid not in seen:
                    seen.add(eid)
                    result.append(self._entities[eid])
        wanted = set(layer_uuids)
        for eid, extra in self._paints_at.items():
            if eid not in seen and extra & wanted:
                seen.add(eid)
                result.append(self._entities[eid])
        return result

    # --- Public API: Cross-layer checks ---

    def has_cross_layer_links(self, entities: Iterable[Displayable]) -> bool:
        """True if any of the entities is linked to an entity living in a different layer."""
        for d in entities:
            own_layer = self._entity_layer_assignment.get(d.internal_id)
            for n in self._links.get(d.internal_id, ()):
                if self._entity_layer_assignment.get(n) != own_layer:
                    return True
        return False

    def are_there_layer_cross_links(self, layers: Iterable[Identifiable]) -> bool:
        """True if any entity of the given layers is linked across a layer boundary."""
        return self.has_cross_layer_links(
            d for layer in layers for d in self.get_entities_on_layer(layer))

    # --- Public API: Geometry ---

    def preconcatenate(self, at: np.ndarray, entities: Iterable[Displayable]) -> int:
        """
        Applies `at` after the current transform of every entity.
        All or nothing: the matrix is validated before any entity is touched.
        """
        at = np.asarray(at, dtype=float)
        if at.shape != (3, 3) or not np.all(np.isfinite(at)):
            raise TransformationError(f"Cannot apply malformed transform of shape {at.shape}.")
        targets = list(entities)
        new_transforms = [at @ d.transform for d in targets]
        for d, t in zip(targets, new_transforms):
            d.transform = t
        if targets:
            self.notify("transform", targets)
        return len(targets)

    def apply_transforms(self, transforms: Dict[Displayable, np.ndarray]) -> None:
        """Sets absolute transforms for several entities at once."""
        validated = {}
        for d, t in transforms.items():
            t = np.asarray(t, dtype=float)
            if t.shape != (3, 3):
                raise TransformationError(f"Transform of '{d.user_identifier}' must be 3x3, got {t.shape}")
            validated[d] = t.copy()
        for d, t in validated.items():
            d.transform = t
        if validated:
            self.notify("transform", list(validated))

    def apply_to_layer(self, layer: Identifiable, at: np.ndarray) -> int:
        """Applies `at` to everything that paints in a layer. Returns the number of entities moved."""
        if not self.get_layer(layer):
            logger.error(f"Layer '{layer}' not found for transformation.")
            return 0
        return self.preconcatenate(at, self.entities_painting_at([layer]))

    def get_bounding_box(self, entities: Optional[Iterable[Displayable]] = None) -> BoundingBox:
        """Union of the bounding boxes of the given entities, or of all entities."""
        overall_bb = BoundingBox()
        for d in (self._entities.values() if entities is None else entities):
            overall_bb = overall_bb.union(d.get_bounding_box())
        return overall_bb

    # --- Public API: History ---

    def add_transform_step(self, entities: Iterable[Displayable]) -> TransformSnapshot:
        """Records the current transforms of the entities as a history step."""
        step = TransformSnapshot(entities)
        self.history.append(step)
        return step

    def add_data_edit_step(self, entities: Iterable[Displayable], field_names: Sequence[str]) -> PropertySnapshot:
        step = PropertySnapshot(entities, field_names)
        self.history.append(step)
        return step

    def add_edit_step(self, entities: Iterable[Displayable], field_names: Sequence[str] = ("transform",)) -> Step:
        """Records a transform snapshot for transform-only edits, a property snapshot otherwise."""
        if tuple(field_names) == ("transform",):
            return self.add_transform_step(entities)
        return self.add_data_edit_step(entities, field_names)

    def rollback(self, before: Step) -> None:
        """
        Restores the state recorded in `before` after a failed checkpointed edit.
        The restored step stays current; no redo target is created by the failure.
        """
        try:
            before.apply()
        except Exception as e:
            raise CheckpointError(f"Rolling back to {before!r} failed: {e}") from e
        self.history.append(before)
        logger.info(f"Rolled back to {before!r}")

    def _record_current_state(self) -> None:
        current = self.history.get_current()
        if current is None or not self.history.index_at_end():
            return
        if isinstance(current, TransformSnapshot):
            self.history.append(TransformSnapshot(current.entities))
        elif isinstance(current, PropertySnapshot):
            self.history.append(PropertySnapshot(current.entities, current.fields))

    def undo_one_step(self) -> bool:
        with self.history.lock:
            self._record_current_state()
            step = self.history.undo_one_step()
            if step is None:
                logger.info("Nothing to undo.")
                return False
            step.apply()
        logger.info(f"Undid one step, history index {self.history.index}")
        return True

    def redo_one_step(self) -> bool:
        with self.history.lock:
            step = self.history.redo_one_step()
            if step is None:
                logger.info("Nothing to redo.")
                return False
            step.apply()
        logger.info(f"Redid one step, history index {self.history.index}")
        return True

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    # --- Public API: Notifications ---

    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def notify(self, kind: str, entities: List[Displayable]) -> None:
        for callback in list(self._listeners):
            try:
                callback(kind, list(entities))
            except Exception:
                logger.exception(f"Document listener failed on '{kind}' notification.")
