import numpy as np
import pytest

from cloudreg.correspondences import Correspondence, find_correspondences
from cloudreg.exceptions import InsufficientCorrespondences
from cloudreg.kdtree import KDTree


@pytest.fixture
def target_tree(grid_cloud):
    return KDTree.build(grid_cloud, leaf_size=4)


def test_one_match_per_source_point(grid_cloud, target_tree, small_motion):
    matches = find_correspondences(small_motion.apply(grid_cloud), target_tree)

    assert len(matches) == len(grid_cloud)
    np.testing.assert_array_equal(matches.source_indices, np.arange(len(grid_cloud)))
    # Motion is smaller than half the point spacing, so every match is the true partner
    np.testing.assert_array_equal(matches.target_indices, np.arange(len(grid_cloud)))


def test_matches_iterate_as_correspondences(grid_cloud, target_tree):
    matches = find_correspondences(grid_cloud[:5], target_tree)
    first = next(iter(matches))
    assert isinstance(first, Correspondence)
    assert first == (0, 0, 0.0)
    assert matches.rmse() == 0.0


def test_distance_gate_rejects_far_points(grid_cloud, target_tree):
    source = np.vstack([grid_cloud, grid_cloud[:4] + [100.0, 0.0, 0.0]])
    matches = find_correspondences(source, target_tree, max_distance=1.0)

    assert len(matches) == len(grid_cloud)
    assert matches.source_indices.max() == len(grid_cloud) - 1
    assert np.all(matches.distances <= 1.0)


def test_distance_gate_keeps_matches_at_threshold():
    tree = KDTree.build(np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0]]))
    source = np.array([[0.5, 0.0, 0.0], [0.0, 10.75, 0.0]])
    matches = find_correspondences(source, tree, max_distance=0.5, min_correspondences=1)
    assert len(matches) == 1
    assert matches.squared_distances[0] == 0.25


def test_normal_gate(grid_cloud, target_tree, random_normals):
    source_normals = random_normals.copy()
    # Flip the first ten source normals against their target partners
    source_normals[:10] *= -1.0

    matches = find_correspondences(grid_cloud, target_tree,
                                   source_normals=source_normals,
                                   target_normals=random_normals,
                                   max_normal_angle=45.0)
    assert len(matches) == len(grid_cloud) - 10
    assert matches.source_indices.min() == 10


def test_normal_gate_skipped_without_threshold(grid_cloud, target_tree, random_normals):
    matches = find_correspondences(grid_cloud, target_tree,
                                   source_normals=-random_normals,
                                   target_normals=random_normals)
    assert len(matches) == len(grid_cloud)


def test_insufficient_correspondences(grid_cloud, target_tree):
    far = grid_cloud + [50.0, 50.0, 50.0]
    with pytest.raises(InsufficientCorrespondences):
        find_correspondences(far, target_tree, max_distance=1.0)

    with pytest.raises(InsufficientCorrespondences):
        find_correspondences(grid_cloud[:2], target_tree)


def test_parallel_queries_match_sequential(rng):
    target = rng.normal(size=(3000, 3))
    source = rng.normal(size=(1000, 3))
    tree = KDTree.build(target)

    sequential = find_correspondences(source, tree, max_distance=0.2)
    parallel = find_correspondences(source, tree, max_distance=0.2, n_jobs=4, chunk_size=64)

    np.testing.assert_array_equal(parallel.source_indices, sequential.source_indices)
    np.testing.assert_array_equal(parallel.target_indices, sequential.target_indices)
    np.testing.assert_array_equal(parallel.squared_distances, sequential.squared_distances)
