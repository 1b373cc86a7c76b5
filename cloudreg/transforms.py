"""Rigid transformation utilities for point cloud registration."""

import logging
from dataclasses import dataclass

import numpy as np

from .exceptions import NumericalInstability

logger = logging.getLogger(__name__)

ORTHONORMALITY_TOLERANCE = 1e-9


def _as_rotation(rotation):
    rotation = np.array(rotation, dtype=np.float64)
    if rotation.shape != (3, 3):
        raise ValueError(f"Rotation must be 3x3, got shape {rotation.shape}")
    return rotation


def _as_translation(translation):
    translation = np.array(translation, dtype=np.float64).reshape(-1)
    if translation.shape != (3,):
        raise ValueError(f"Translation must have 3 components, got {translation.shape}")
    return translation


def orthonormalize(rotation):
    """
    Project a 3x3 matrix onto the closest proper rotation (det +1).

    Args:
        rotation: 3x3 matrix that drifted away from orthonormality

    Returns:
        Closest rotation matrix in the Frobenius sense
    """
    U, _, Vt = np.linalg.svd(rotation)
    D = np.eye(3)
    D[2, 2] = np.sign(np.linalg.det(U @ Vt)) or 1.0
    return U @ D @ Vt


def orthonormality_error(rotation):
    """Largest absolute deviation of R^T R from the identity."""
    return float(np.max(np.abs(rotation.T @ rotation - np.eye(3))))


def skew(vector):
    """Cross-product matrix [v]x such that [v]x @ w == cross(v, w)."""
    x, y, z = vector
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0]
    ])


def rotation_from_vector(rotation_vector):
    """
    Rodrigues' formula: axis-angle vector to rotation matrix.

    The vector's direction is the rotation axis and its norm the angle in
    radians.
    """
    rotation_vector = np.asarray(rotation_vector, dtype=np.float64)
    theta = np.linalg.norm(rotation_vector)
    if theta < 1e-12:
        # First-order expansion, re-projected to stay a proper rotation
        return orthonormalize(np.eye(3) + skew(rotation_vector))
    K = skew(rotation_vector / theta)
    return np.eye(3) + np.sin(theta) * K + (1.0 - np.cos(theta)) * (K @ K)


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """Rotation plus translation acting on 3D points as ``R @ p + t``."""

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self):
        rotation = _as_rotation(self.rotation)
        translation = _as_translation(self.translation)
        rotation.flags.writeable = False
        translation.flags.writeable = False
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    @classmethod
    def identity(cls):
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix):
        """Build from a 4x4 homogeneous transformation matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"Homogeneous transform must be 4x4, got {matrix.shape}")
        return cls(matrix[:3, :3], matrix[:3, 3])

    @classmethod
    def from_rotation_vector(cls, rotation_vector, translation=(0.0, 0.0, 0.0)):
        return cls(rotation_from_vector(rotation_vector), translation)

    @classmethod
    def from_translation(cls, translation):
        return cls(np.eye(3), translation)

    def as_matrix(self):
        """Homogeneous 4x4 representation."""
        transformation = np.eye(4)
        transformation[:3, :3] = self.rotation
        transformation[:3, 3] = self.translation
        return transformation

    def apply(self, points):
        """Transform an (N, 3) array or a single 3-vector of points."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.rotation.T + self.translation

    def rotate(self, vectors):
        """Rotate direction vectors (e.g. normals) without translating them."""
        vectors = np.asarray(vectors, dtype=np.float64)
        return vectors @ self.rotation.T

    def compose(self, other, tolerance=ORTHONORMALITY_TOLERANCE):
        """
        Combine two transforms: the result applies ``other`` first, then ``self``.

        The combined rotation is re-orthonormalized when its drift exceeds
        ``tolerance``.

        Raises:
            NumericalInstability: if the rotation cannot be restored to a
                proper orthonormal matrix.
        """
        rotation = self.rotation @ other.rotation
        translation = self.rotation @ other.translation + self.translation

        if not (np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation))):
            raise NumericalInstability("Composed transform contains non-finite values")

        error = orthonormality_error(rotation)
        if error > tolerance:
            logger.debug("Re-orthonormalizing rotation (drift %.3e)", error)
            rotation = orthonormalize(rotation)
            error = orthonormality_error(rotation)
            if error > tolerance or np.linalg.det(rotation) <= 0:
                raise NumericalInstability(
                    "Rotation failed to re-orthonormalize",
                    context=f"residual drift {error:.3e}",
                )
        return RigidTransform(rotation, translation)

    def __matmul__(self, other):
        if not isinstance(other, RigidTransform):
            return NotImplemented
        return self.compose(other)

    def then(self, other):
        """Transform that applies ``self`` first, then ``other``."""
        return other.compose(self)

    def inverse(self):
        rotation = self.rotation.T
        return RigidTransform(rotation, -rotation @ self.translation)

    def rotation_angle(self):
        """Rotation angle in radians, in [0, pi]."""
        cos_angle = (np.trace(self.rotation) - 1.0) / 2.0
        return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))

    def determinant(self):
        return float(np.linalg.det(self.rotation))

    def is_orthonormal(self, tolerance=1e-6):
        return (orthonormality_error(self.rotation) <= tolerance
                and abs(self.determinant() - 1.0) <= tolerance)

    def orthonormalized(self, tolerance=0.0):
        """Copy with the rotation projected onto SO(3), or self if its drift is within ``tolerance``."""
        if orthonormality_error(self.rotation) <= tolerance:
            return self
        return RigidTransform(orthonormalize(self.rotation), self.translation)

    def allclose(self, other, atol=1e-8):
        return (np.allclose(self.rotation, other.rotation, atol=atol)
                and np.allclose(self.translation, other.translation, atol=atol))


def as_rigid_transform(value):
    """Coerce None, a RigidTransform or a 4x4 matrix into a RigidTransform."""
    if value is None:
        return RigidTransform.identity()
    if isinstance(value, RigidTransform):
        return value
    return RigidTransform.from_matrix(value)
