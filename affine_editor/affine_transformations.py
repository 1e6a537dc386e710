"""
affine_transformations.py

2D affine transformation helpers using NumPy.
Provides functions to create 3x3 homogeneous matrices (identity, translation,
rotation, scaling), to compose and invert them, to apply them to point data,
and to measure the angle swept by a pointer around a pivot.

Operations that can degenerate (inversion, angle measurement) return None
instead of raising, so that callers decide whether to skip the sub-step.
"""

import numpy as np
import math
import logging
from typing import Tuple, List, Optional, Union, Sequence

logger = logging.getLogger(__name__)

# Determinants below this are treated as singular.
SINGULAR_TOLERANCE = 1e-12

# --- Matrix Creation Functions ---

def identity_matrix() -> np.ndarray:
    """Return a 3x3 identity matrix."""
    return np.identity(3, dtype=float)

def translation_matrix(dx: float, dy: float) -> np.ndarray:
    """Return a 3x3 translation matrix for translating by (dx, dy)."""
    mat = np.identity(3, dtype=float)
    mat[0, 2] = dx
    mat[1, 2] = dy
    return mat

def rotation_matrix_rad(angle_rad: float, cx: float = 0.0, cy: float = 0.0) -> np.ndarray:
    """
    Return a 3x3 rotation matrix for rotating by angle_rad about point (cx, cy).
    Positive angles rotate from the +x axis towards the +y axis.
    """
    cos_a = math.cos(angle_rad)
    sin_a = math.sin(angle_rad)
    rot_mat = np.array([
        [cos_a, -sin_a, 0],
        [sin_a,  cos_a, 0],
        [0,      0,     1]
    ], dtype=float)
    # If center is not origin, translate to origin, rotate, translate back
    if not (math.isclose(cx, 0.0) and math.isclose(cy, 0.0)):
        return translation_matrix(cx, cy) @ rot_mat @ translation_matrix(-cx, -cy)
    return rot_mat

def rotation_matrix_deg(angle_deg: float, cx: float = 0.0, cy: float = 0.0) -> np.ndarray:
    """Return a 3x3 rotation matrix using degrees, rotating about point (cx, cy)."""
    return rotation_matrix_rad(math.radians(angle_deg), cx, cy)

def scale_matrix(sx: float, sy: Optional[float] = None, cx: float = 0.0, cy: float = 0.0) -> np.ndarray:
    """
    Return a 3x3 scaling matrix.
    If sy is None, uniform scaling (sx) is applied.
    Scaling is performed about the point (cx, cy) if provided.
    """
    if sy is None:
        sy = sx
    scale_mat = np.array([
        [sx, 0,  0],
        [0,  sy, 0],
        [0,  0,  1]
    ], dtype=float)
    if not (math.isclose(cx, 0.0) and math.isclose(cy, 0.0)):
        return translation_matrix(cx, cy) @ scale_mat @ translation_matrix(-cx, -cy)
    return scale_mat

def combine_transformations(*matrices: np.ndarray) -> np.ndarray:
    """
    Combine multiple 3x3 transformation matrices.
    Transformations are applied in the order given (left to right multiplication).
    """
    result = identity_matrix()
    for m in matrices:
        result = result @ m
    return result

def preconcatenate(base: np.ndarray, at: np.ndarray) -> np.ndarray:
    """Return a new matrix equal to `at` applied after `base`."""
    return at @ base

# --- Inversion and Comparison ---

def try_invert(matrix: np.ndarray) -> Optional[np.ndarray]:
    """
    Invert a 3x3 affine matrix.
    Returns None when the matrix is singular or holds non-finite values.
    """
    if matrix.shape != (3, 3) or not np.all(np.isfinite(matrix)):
        logger.debug("Cannot invert a malformed or non-finite matrix.")
        return None
    det = matrix[0, 0] * matrix[1, 1] - matrix[0, 1] * matrix[1, 0]
    if abs(det) < SINGULAR_TOLERANCE:
        logger.debug(f"Cannot invert singular matrix (det={det}).")
        return None
    return np.linalg.inv(matrix)

def difference_transform(new: np.ndarray, old: np.ndarray) -> Optional[np.ndarray]:
    """
    Return C such that C @ old == new, i.e. new @ old^-1.
    Returns None if old is not invertible.
    """
    old_inv = try_invert(old)
    if old_inv is None:
        return None
    return new @ old_inv

def transforms_equal(a: np.ndarray, b: np.ndarray) -> bool:
    """Exact element-wise equality of two matrices."""
    return a.shape == b.shape and bool(np.array_equal(a, b))

def transforms_close(a: np.ndarray, b: np.ndarray, atol: float = 1e-9) -> bool:
    return a.shape == b.shape and bool(np.allclose(a, b, atol=atol))

def extract_rotation_deg(matrix: np.ndarray) -> float:
    """Angle, in degrees, of the rotation component of an affine matrix."""
    return math.degrees(math.atan2(matrix[1, 0], matrix[0, 0]))

def extract_scale(matrix: np.ndarray) -> Tuple[float, float]:
    """Lengths of the transformed unit axes."""
    sx = float(np.linalg.norm(matrix[0:2, 0]))
    sy = float(np.linalg.norm(matrix[0:2, 1]))
    return sx, sy

# --- Angles ---

def rotation_angle_between(pivot: Tuple[float, float],
                           previous: Tuple[float, float],
                           current: Tuple[float, float]) -> Optional[float]:
    """
    Signed angle, in radians, swept from the ray pivot->previous to the ray pivot->current.

    The magnitude is the acos of the normalized dot product; the sign comes from the
    z-component of the 2D cross product. Returns None for zero-length rays.
    """
    ax = previous[0] - pivot[0]
    ay = previous[1] - pivot[1]
    bx = current[0] - pivot[0]
    by = current[1] - pivot[1]
    norm = math.hypot(ax, ay) * math.hypot(bx, by)
    if norm == 0.0 or math.isnan(norm):
        return None
    cos = (ax * bx + ay * by) / norm
    # Rounding can push the cosine slightly outside [-1, 1]
    cos = max(-1.0, min(1.0, cos))
    delta = math.acos(cos)
    if math.isnan(delta):
        return None
    zc = ax * by - bx * ay
    if zc < 0:
        delta = -delta
    return delta

# --- Point Transformation ---

def apply_transform(points: Sequence[Union[Tuple[float, float], np.ndarray]], matrix: np.ndarray) -> List[Tuple[float, float]]:
    """
    Apply a 3x3 transformation matrix to a sequence of 2D points.
    Points are assumed to be given as (x, y) pairs.
    """
    if len(points) == 0:
        return []
    pts = np.ones((len(points), 3), dtype=float)
    for i, p in enumerate(points):
        pts[i, 0], pts[i, 1] = p[0], p[1]
    transformed = (matrix @ pts.T).T
    return [(float(row[0]), float(row[1])) for row in transformed]

def get_transformed_point(point: Tuple[float, float], matrix: np.ndarray) -> Tuple[float, float]:
    """Apply a 3x3 transformation matrix to a single 2D point."""
    return apply_transform([point], matrix)[0]
