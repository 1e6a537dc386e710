"""
editor_common.py

Common utilities and types for the affine editing engine.
Provides the shared BoundingBox type, the exception hierarchy and the logging
setup used across the package.
"""

import sys
import logging
from dataclasses import dataclass
from typing import Tuple, Sequence, Optional, TextIO

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO, stream: Optional[TextIO] = None) -> None:
    """Configure root logging for applications embedding the editor."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=stream or sys.stdout)


@dataclass(frozen=True)
class BoundingBox:
    """Represents a 2D axis-aligned bounding box in world coordinates."""
    min_x: float = float('inf')
    min_y: float = float('inf')
    max_x: float = float('-inf')
    max_y: float = float('-inf')

    @property
    def x(self) -> float:
        return self.min_x

    @property
    def y(self) -> float:
        return self.min_y

    @property
    def width(self) -> float:
        return self.max_x - self.min_x if self.is_valid() else 0.0

    @property
    def height(self) -> float:
        return self.max_y - self.min_y if self.is_valid() else 0.0

    @property
    def center(self) -> Tuple[float, float]:
        if self.is_valid():
            return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)
        logger.warning("Calculating center of an invalid BoundingBox.")
        return (0.0, 0.0)

    def is_valid(self) -> bool:
        return self.min_x <= self.max_x and self.min_y <= self.max_y

    def contains(self, x: float, y: float) -> bool:
        """Inclusive point containment, edges count as inside."""
        if not self.is_valid():
            return False
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def union(self, other: Optional['BoundingBox']) -> 'BoundingBox':
        if other is None or not other.is_valid():
            return self
        if not self.is_valid():
            return other
        return BoundingBox(
            min_x=min(self.min_x, other.min_x),
            min_y=min(self.min_y, other.min_y),
            max_x=max(self.max_x, other.max_x),
            max_y=max(self.max_y, other.max_y)
        )

    def expand(self, padding: float) -> 'BoundingBox':
        if not self.is_valid():
            return self
        return BoundingBox(self.min_x - padding, self.min_y - padding,
                           self.max_x + padding, self.max_y + padding)

    def translated(self, dx: float, dy: float) -> 'BoundingBox':
        if not self.is_valid():
            return self
        return BoundingBox(self.min_x + dx, self.min_y + dy, self.max_x + dx, self.max_y + dy)

    @staticmethod
    def from_points(points: Sequence[Tuple[float, float]]) -> 'BoundingBox':
        if not points:
            return BoundingBox()
        min_x = min(p[0] for p in points)
        min_y = min(p[1] for p in points)
        max_x = max(p[0] for p in points)
        max_y = max(p[1] for p in points)
        return BoundingBox(min_x, min_y, max_x, max_y)


# Custom Exceptions
class EditorError(Exception):
    """Base exception for the affine editor."""
    pass

class DocumentConfigurationError(EditorError):
    """Error related to document setup or entity relationships."""
    pass

class TransformationError(EditorError):
    """Malformed transformation data, e.g. a matrix that is not 3x3."""
    pass

class CheckpointError(EditorError):
    """Restoring the pre-state of a failed checkpointed operation failed as well."""
    pass

class EditorConfigError(EditorError):
    """Invalid configuration value."""
    pass
