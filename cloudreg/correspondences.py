"""Nearest-neighbour correspondence search with outlier rejection."""

import logging
from typing import NamedTuple

import numpy as np
from joblib import Parallel, delayed

from .exceptions import InsufficientCorrespondences

logger = logging.getLogger(__name__)


class Correspondence(NamedTuple):
    source_index: int
    target_index: int
    squared_distance: float


class Correspondences:
    """Matches produced by one ICP iteration, stored as parallel arrays."""

    def __init__(self, source_indices, target_indices, squared_distances):
        self.source_indices = np.asarray(source_indices, dtype=np.int64)
        self.target_indices = np.asarray(target_indices, dtype=np.int64)
        self.squared_distances = np.asarray(squared_distances, dtype=np.float64)

    @property
    def distances(self):
        return np.sqrt(self.squared_distances)

    def rmse(self):
        if not len(self):
            return float("nan")
        return float(np.sqrt(np.mean(self.squared_distances)))

    def __len__(self):
        return self.source_indices.shape[0]

    def __iter__(self):
        for s, t, d in zip(self.source_indices, self.target_indices, self.squared_distances):
            yield Correspondence(int(s), int(t), float(d))

    def __repr__(self):
        return f"Correspondences(n={len(self)}, rmse={self.rmse():.6g})"


def _query_chunks(tree, points, n_jobs, chunk_size):
    """Query the tree in chunks; returns once every chunk has been answered."""
    if points.shape[0] <= chunk_size or n_jobs == 1:
        return tree.query(points)

    n_chunks = -(-points.shape[0] // chunk_size)
    results = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(tree.query)(chunk) for chunk in np.array_split(points, n_chunks)
    )
    indices, sq_distances = zip(*results)
    return np.concatenate(indices), np.concatenate(sq_distances)


def find_correspondences(source_points, tree, *, max_distance=np.inf,
                         source_normals=None, target_normals=None,
                         max_normal_angle=None, min_correspondences=3,
                         n_jobs=1, chunk_size=2048):
    """
    Match every source point to its nearest target point and reject outliers.

    Args:
        source_points: (N, 3) source points, already moved by the current estimate
        tree: KDTree built over the target cloud
        max_distance: Matches farther than this are discarded
        source_normals: Optional (N, 3) source normals, moved like the points
        target_normals: Optional target normals, indexed like the tree's cloud
        max_normal_angle: Maximum angle in degrees between matched normals;
            only applied when both normal sets are given
        min_correspondences: Minimum number of matches that must survive
        n_jobs: joblib worker count for the queries
        chunk_size: Source points per query task

    Returns:
        Correspondences with at most one entry per source point

    Raises:
        InsufficientCorrespondences: if fewer than ``min_correspondences`` remain
    """
    source_points = np.asarray(source_points, dtype=np.float64)
    n_source = source_points.shape[0]

    target_indices, sq_distances = _query_chunks(tree, source_points, n_jobs, chunk_size)
    source_indices = np.arange(n_source, dtype=np.int64)

    keep = sq_distances <= max_distance * max_distance
    n_far = n_source - int(np.count_nonzero(keep))

    n_tilted = 0
    if max_normal_angle is not None and source_normals is not None and target_normals is not None:
        cosines = np.einsum("ij,ij->i", np.asarray(source_normals), target_normals[target_indices])
        cosines = np.clip(cosines, -1.0, 1.0)
        angle_ok = cosines >= np.cos(np.deg2rad(max_normal_angle))
        n_tilted = int(np.count_nonzero(keep & ~angle_ok))
        keep &= angle_ok

    matches = Correspondences(source_indices[keep], target_indices[keep], sq_distances[keep])
    logger.debug("Kept %d/%d correspondences (%d too far, %d normal mismatch)",
                 len(matches), n_source, n_far, n_tilted)

    if len(matches) < min_correspondences:
        raise InsufficientCorrespondences(
            f"Only {len(matches)} correspondences survived rejection, "
            f"need at least {min_correspondences}",
            context=f"{n_far} beyond max distance, {n_tilted} normal mismatches",
        )
    return matches
