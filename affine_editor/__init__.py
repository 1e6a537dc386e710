"""
Affine Editor

Engine for interactive affine transform editing of selected entities in a
multi-layer document, with snapshot based undo/redo.

Main entry points:
- EditorDocument: layers, entities, links and the document history.
- Selection: what is selected in a view, and checkpointed batch operations on it.
- TransformEditor: turns pointer gestures into transforms of a selection.
"""

from .editor_common import (
    BoundingBox, EditorError, DocumentConfigurationError, TransformationError,
    CheckpointError, EditorConfigError, configure_logging
)
from .editor_config import EditorConfig
from .editor_entities import EditorEntity, Layer, Displayable, Patch, Polyline
from .editor_document import EditorDocument
from .history import History, Step
from .history_steps import TransformSnapshot, PropertySnapshot
from .collaborators import (
    RepaintScheduler, CoalescingRepaintWorker, Interaction, HeadlessInteraction, ValueField
)
from .selection import Selection, TransformOp
from .transform_editor import TransformEditor, Handle, Modifier, ControlPoint

# Current package version
__version__ = "0.1.0"
