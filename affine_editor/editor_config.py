"""
editor_config.py

Tunable parameters of the editing engine. Screen-space values are in pixels
and are divided by the current magnification to get world units.
"""

import json
import logging
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping, Optional

from .editor_common import EditorConfigError

logger = logging.getLogger(__name__)


@dataclass
class EditorConfig:
    selection_padding: float = 31.0        # World-unit padding around repaint regions
    handle_radius_px: float = 4.0          # Pick radius of box handles
    rotation_handle_offset_px: float = 50.0
    pivot_radius_factor: float = 3.5       # Pivot pick radius, in handle radii
    control_point_radius_px: float = 8.0
    max_control_points: int = 3
    rotation_snap_deg: float = 10.0
    history_limit: Optional[int] = None    # None keeps every step

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raises EditorConfigError if any value is out of range."""
        for name in ("handle_radius_px", "rotation_handle_offset_px", "pivot_radius_factor",
                     "control_point_radius_px", "rotation_snap_deg"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise EditorConfigError(f"'{name}' must be a positive number, got {value!r}")
        if not isinstance(self.selection_padding, (int, float)) or self.selection_padding < 0:
            raise EditorConfigError(f"'selection_padding' must be non-negative, got {self.selection_padding!r}")
        if not isinstance(self.max_control_points, int) or not 1 <= self.max_control_points <= 3:
            raise EditorConfigError(f"'max_control_points' must be 1, 2 or 3, got {self.max_control_points!r}")
        if self.history_limit is not None:
            raise EditorConfigError("History is unbounded; 'history_limit' must be None.")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> 'EditorConfig':
        """Builds a config from a mapping. Unknown keys are logged and ignored."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in mapping.items():
            if key not in known:
                logger.warning(f"Ignoring unknown editor config key '{key}'.")
                continue
            values[key] = value
        return cls(**values)

    @classmethod
    def from_json_file(cls, path: str) -> 'EditorConfig':
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise EditorConfigError(f"Could not read editor config from '{path}': {e}") from e
        if not isinstance(data, dict):
            raise EditorConfigError(f"Editor config in '{path}' must be a JSON object.")
        logger.info(f"Loaded editor config from {path}")
        return cls.from_mapping(data)
