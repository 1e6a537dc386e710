"""
point_models.py

Point-match models used by free-form control points.
Given correspondences between fixed points p and moving points q, each model
finds the weighted least-squares transform of its kind mapping p onto q:

- TranslationModel2D: translation only (1 correspondence suffices)
- SimilarityModel2D: uniform scale, rotation and translation (2 correspondences)
- AffineModel2D: full 6-parameter affine (3 non-collinear correspondences)

fit() returns False on degenerate input and keeps the previous parameters, so a
caller can skip one refit without losing the last good model.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .affine_transformations import identity_matrix, get_transformed_point

logger = logging.getLogger(__name__)

Point2D = Tuple[float, float]

DEGENERACY_TOLERANCE = 1e-12


@dataclass
class PointMatch:
    """A fixed point p, the moving point q it should map onto, and a weight."""
    p: Point2D
    q: Point2D
    weight: float = 1.0

    def distance(self, matrix: np.ndarray) -> float:
        """Distance between q and p pushed through the given transform."""
        px, py = get_transformed_point(self.p, matrix)
        return float(np.hypot(px - self.q[0], py - self.q[1]))


def _as_arrays(matches: Sequence[PointMatch]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    p = np.array([m.p for m in matches], dtype=float).reshape(-1, 2)
    q = np.array([m.q for m in matches], dtype=float).reshape(-1, 2)
    w = np.array([m.weight for m in matches], dtype=float)
    return p, q, w


class PointModel(ABC):
    """Base class for 2D point-match models."""

    min_num_matches: int = 1

    def __init__(self):
        self._matrix = identity_matrix()

    @abstractmethod
    def _estimate(self, p: np.ndarray, q: np.ndarray, w: np.ndarray) -> Optional[np.ndarray]:
        """Return the fitted 3x3 matrix, or None if the configuration is degenerate."""
        pass

    def fit(self, matches: Sequence[PointMatch]) -> bool:
        """Fit the model to the matches. Returns False and keeps the old parameters on failure."""
        if len(matches) < self.min_num_matches:
            logger.debug(f"{type(self).__name__} needs at least {self.min_num_matches} matches, got {len(matches)}.")
            return False
        p, q, w = _as_arrays(matches)
        ws = float(np.sum(w))
        if ws <= 0.0 or not np.all(np.isfinite(p)) or not np.all(np.isfinite(q)):
            logger.debug(f"{type(self).__name__}: invalid weights or coordinates.")
            return False
        matrix = self._estimate(p, q, w)
        if matrix is None or not np.all(np.isfinite(matrix)):
            logger.debug(f"{type(self).__name__}: ill-defined data points, keeping previous fit.")
            return False
        self._matrix = matrix
        return True

    def create_affine(self) -> np.ndarray:
        """The fitted transform as a new 3x3 matrix."""
        return self._matrix.copy()

    def apply(self, point: Point2D) -> Point2D:
        return get_transformed_point(point, self._matrix)

    def cost(self, matches: Sequence[PointMatch]) -> float:
        """Weighted mean residual distance of the matches under the current fit."""
        if not matches:
            return 0.0
        total_w = sum(m.weight for m in matches)
        if total_w <= 0.0:
            return 0.0
        return sum(m.weight * m.distance(self._matrix) for m in matches) / total_w

    @staticmethod
    def _centroids(p: np.ndarray, q: np.ndarray, w: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        ws = np.sum(w)
        pc = (w[:, None] * p).sum(axis=0) / ws
        qc = (w[:, None] * q).sum(axis=0) / ws
        return pc, qc


class TranslationModel2D(PointModel):
    min_num_matches = 1

    def _estimate(self, p, q, w):
        pc, qc = self._centroids(p, q, w)
        matrix = identity_matrix()
        matrix[0:2, 2] = qc - pc
        return matrix


class SimilarityModel2D(PointModel):
    min_num_matches = 2

    def _estimate(self, p, q, w):
        pc, qc = self._centroids(p, q, w)
        dp = p - pc
        dq = q - qc
        a = np.sum(w * (dp[:, 0] * dq[:, 0] + dp[:, 1] * dq[:, 1]))
        b = np.sum(w * (dp[:, 0] * dq[:, 1] - dp[:, 1] * dq[:, 0]))
        mu = np.sum(w * (dp[:, 0] ** 2 + dp[:, 1] ** 2))
        if mu < DEGENERACY_TOLERANCE:
            return None
        scos = a / mu
        ssin = b / mu
        matrix = identity_matrix()
        matrix[0, 0] = scos
        matrix[0, 1] = -ssin
        matrix[1, 0] = ssin
        matrix[1, 1] = scos
        matrix[0, 2] = qc[0] - scos * pc[0] + ssin * pc[1]
        matrix[1, 2] = qc[1] - ssin * pc[0] - scos * pc[1]
        return matrix


class AffineModel2D(PointModel):
    min_num_matches = 3

    def _estimate(self, p, q, w):
        pc, qc = self._centroids(p, q, w)
        dp = p - pc
        dq = q - qc
        a00 = np.sum(w * dp[:, 0] * dp[:, 0])
        a01 = np.sum(w * dp[:, 0] * dp[:, 1])
        a11 = np.sum(w * dp[:, 1] * dp[:, 1])
        b00 = np.sum(w * dp[:, 0] * dq[:, 0])
        b01 = np.sum(w * dp[:, 0] * dq[:, 1])
        b10 = np.sum(w * dp[:, 1] * dq[:, 0])
        b11 = np.sum(w * dp[:, 1] * dq[:, 1])
        det = a00 * a11 - a01 * a01
        # Collinear fixed points leave one direction unconstrained
        if abs(det) <= DEGENERACY_TOLERANCE * max(1.0, a00 * a11):
            return None
        m00 = (a11 * b00 - a01 * b10) / det
        m01 = (a00 * b10 - a01 * b00) / det
        m10 = (a11 * b01 - a01 * b11) / det
        m11 = (a00 * b11 - a01 * b01) / det
        matrix = identity_matrix()
        matrix[0, 0] = m00
        matrix[0, 1] = m01
        matrix[1, 0] = m10
        matrix[1, 1] = m11
        matrix[0, 2] = qc[0] - m00 * pc[0] - m01 * pc[1]
        matrix[1, 2] = qc[1] - m10 * pc[0] - m11 * pc[1]
        return matrix


def model_for_point_count(n: int) -> Optional[PointModel]:
    """1, 2 or 3 control points select a translation, similarity or affine model."""
    if n == 1:
        return TranslationModel2D()
    if n == 2:
        return SimilarityModel2D()
    if n == 3:
        return AffineModel2D()
    return None


def make_matches(points: Sequence[Point2D]) -> List[PointMatch]:
    """Identity correspondences (q == p) for a fresh set of control points."""
    return [PointMatch(p=(float(x), float(y)), q=(float(x), float(y))) for x, y in points]
