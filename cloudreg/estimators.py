"""Closed-form and linearized rigid transform estimation from correspondences."""

import enum
from typing import NamedTuple, Optional

import numpy as np

from .exceptions import DegenerateConfiguration, MissingNormals
from .transforms import RigidTransform, rotation_from_vector

MIN_PAIRS = 3
# Second singular value of the cross-covariance relative to the first
RANK_TOLERANCE = 1e-10


class Variant(enum.Enum):
    POINT_TO_POINT = "point_to_point"
    POINT_TO_PLANE = "point_to_plane"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower().replace("-", "_"))


class Estimate(NamedTuple):
    transform: RigidTransform
    residual: float


def _check_pairs(source_points, target_points):
    source_points = np.asarray(source_points, dtype=np.float64)
    target_points = np.asarray(target_points, dtype=np.float64)
    if source_points.shape != target_points.shape or source_points.ndim != 2 \
            or source_points.shape[1] != 3:
        raise ValueError(
            f"Expected matching (N, 3) arrays, got {source_points.shape} "
            f"and {target_points.shape}"
        )
    return source_points, target_points


def _normalized_weights(weights, n_points):
    if weights is None:
        return np.full(n_points, 1.0 / n_points) if n_points else np.zeros(0)

    weights = np.asarray(weights, dtype=np.float64)
    if weights.shape != (n_points,):
        raise ValueError(f"Expected {n_points} weights, got shape {weights.shape}")
    if np.any(weights < 0) or not np.all(np.isfinite(weights)):
        raise ValueError("Weights must be finite and non-negative")
    if np.count_nonzero(weights) < MIN_PAIRS:
        raise DegenerateConfiguration(
            f"Only {np.count_nonzero(weights)} correspondences carry weight, "
            f"need at least {MIN_PAIRS}"
        )
    return weights / np.sum(weights)


def estimate_point_to_point(source_points, target_points, weights=None):
    """
    Weighted Kabsch/Umeyama estimate of the rigid transform mapping
    ``source_points`` onto ``target_points``.

    Args:
        source_points: (N, 3) matched source points
        target_points: (N, 3) matched target points
        weights: Optional (N,) non-negative weights

    Returns:
        Estimate with the transform and the weighted RMSE of the aligned pairs

    Raises:
        DegenerateConfiguration: fewer than 3 pairs, or the pairs are
            collinear (cross-covariance rank < 2)
    """
    source_points, target_points = _check_pairs(source_points, target_points)
    n_points = source_points.shape[0]
    if n_points < MIN_PAIRS:
        raise DegenerateConfiguration(
            f"Point-to-point estimation needs at least {MIN_PAIRS} correspondences, got {n_points}"
        )
    weights = _normalized_weights(weights, n_points)

    # Weighted centroids
    source_centroid = weights @ source_points
    target_centroid = weights @ target_points

    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Weighted cross-covariance H = U S Vt
    H = (source_centered * weights[:, np.newaxis]).T @ target_centered
    U, S, Vt = np.linalg.svd(H)

    if S[0] <= np.finfo(np.float64).tiny or S[1] <= RANK_TOLERANCE * S[0]:
        raise DegenerateConfiguration(
            "Correspondences are collinear or coincident",
            context=f"singular values {S}",
        )

    # R = V diag(1, 1, det(V U^T)) U^T, never a reflection
    V = Vt.T
    D = np.eye(3)
    D[2, 2] = 1.0 if np.linalg.det(V @ U.T) >= 0 else -1.0
    R = V @ D @ U.T

    t = target_centroid - R @ source_centroid

    transform = RigidTransform(R, t)
    errors = transform.apply(source_points) - target_points
    residual = float(np.sqrt(weights @ np.einsum("ij,ij->i", errors, errors)))
    return Estimate(transform, residual)


def estimate_point_to_plane(source_points, target_points, target_normals, weights=None):
    """
    Linearized point-to-plane estimate.

    Solves for the small rotation vector w and translation t minimizing
    sum_i (n_i . (p_i + w x p_i + t - q_i))^2, then converts w into an exact
    rotation with Rodrigues' formula.

    Raises:
        MissingNormals: if ``target_normals`` is None
        DegenerateConfiguration: fewer than 3 pairs or a rank-deficient system
    """
    if target_normals is None:
        raise MissingNormals("Point-to-plane estimation requires target normals")
    source_points, target_points = _check_pairs(source_points, target_points)
    target_normals = np.asarray(target_normals, dtype=np.float64)
    if target_normals.shape != target_points.shape:
        raise ValueError(
            f"Expected {target_points.shape} normals, got {target_normals.shape}"
        )
    n_points = source_points.shape[0]
    if n_points < MIN_PAIRS:
        raise DegenerateConfiguration(
            f"Point-to-plane estimation needs at least {MIN_PAIRS} correspondences, got {n_points}"
        )
    weights = _normalized_weights(weights, n_points)
    sqrt_w = np.sqrt(weights)[:, np.newaxis]

    # Rows [p x n, n] and right-hand side n . (q - p), both weighted
    A = np.hstack([np.cross(source_points, target_normals), target_normals]) * sqrt_w
    b = np.einsum("ij,ij->i", target_normals, target_points - source_points) * sqrt_w[:, 0]

    params, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
    if rank < 6:
        raise DegenerateConfiguration(
            "Point-to-plane system is rank deficient",
            context=f"rank {rank} of 6",
        )

    transform = RigidTransform(rotation_from_vector(params[:3]), params[3:])
    moved = transform.apply(source_points)
    distances = np.einsum("ij,ij->i", target_normals, moved - target_points)
    residual = float(np.sqrt(weights @ distances ** 2))
    return Estimate(transform, residual)


def estimate(variant, source_points, target_points,
             target_normals: Optional[np.ndarray] = None, weights=None) -> Estimate:
    """Dispatch to the estimator selected by ``variant``."""
    variant = Variant.parse(variant)
    if variant is Variant.POINT_TO_POINT:
        return estimate_point_to_point(source_points, target_points, weights=weights)
    if variant is Variant.POINT_TO_PLANE:
        return estimate_point_to_plane(source_points, target_points, target_normals,
                                       weights=weights)
    raise ValueError(f"Unknown variant: {variant}")
