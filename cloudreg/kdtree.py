"""KD-Tree implementation for efficient spatial partitioning and nearest neighbor search."""

import numpy as np

from .exceptions import EmptyCloud
from .point_cloud import PointCloud
from .utils import time_function

LEAF = -1


class KDTree:
    """
    KD-Tree over a fixed set of 3D points.

    Nodes live in flat arrays and reference their children by row number.
    Internal nodes split their point range at the median of the axis with the
    widest spread; leaves hold a contiguous range of the permutation array
    ``order``, which maps tree positions back to indices in the input cloud.
    The tree is never modified after ``build`` and may be queried from
    several threads at once.
    """

    def __init__(self, leaf_size=16):
        self.leaf_size = max(1, int(leaf_size))
        self.points = None
        self.order = None
        self._sorted = None
        # Arena rows: one entry per node
        self.axis = []
        self.split = []
        self.left = []
        self.right = []
        self.start = []
        self.end = []

    @classmethod
    @time_function
    def build(cls, cloud, leaf_size=16):
        """
        Build a tree over a PointCloud or an (N, 3) array.

        Raises:
            EmptyCloud: if there are no points to index
        """
        points = cloud.points if isinstance(cloud, PointCloud) else np.array(cloud, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected points of shape (N, 3), got {points.shape}")
        if points.shape[0] == 0:
            raise EmptyCloud("Cannot build a spatial index over an empty cloud")

        tree = cls(leaf_size=leaf_size)
        tree.points = points
        order = np.arange(points.shape[0], dtype=np.int64)
        tree._build_nodes(order)
        tree.order = order
        tree._sorted = np.ascontiguousarray(points[order])
        tree.order.flags.writeable = False
        tree._sorted.flags.writeable = False
        return tree

    def _new_node(self, axis, split, start, end):
        self.axis.append(axis)
        self.split.append(split)
        self.left.append(LEAF)
        self.right.append(LEAF)
        self.start.append(start)
        self.end.append(end)
        return len(self.axis) - 1

    def _build_nodes(self, order):
        # Explicit stack of node rows still to be split
        root = self._new_node(LEAF, 0.0, 0, order.shape[0])
        stack = [root]

        while stack:
            node = stack.pop()
            start, end = self.start[node], self.end[node]
            if end - start <= self.leaf_size:
                continue

            segment = order[start:end]
            coords = self.points[segment]
            spread = coords.max(axis=0) - coords.min(axis=0)
            axis = int(np.argmax(spread))
            if spread[axis] == 0.0:
                # All points coincide: no split can separate them
                continue

            median = (end - start) // 2
            partition = np.argpartition(coords[:, axis], median)
            segment[:] = segment[partition]

            self.axis[node] = axis
            self.split[node] = float(self.points[segment[median], axis])
            self.left[node] = self._new_node(LEAF, 0.0, start, start + median)
            self.right[node] = self._new_node(LEAF, 0.0, start + median, end)
            stack.append(self.left[node])
            stack.append(self.right[node])

    def __len__(self):
        return 0 if self.points is None else self.points.shape[0]

    @property
    def node_count(self):
        return len(self.axis)

    def depth(self):
        deepest = 0
        stack = [(0, 1)] if self.axis else []
        while stack:
            node, level = stack.pop()
            deepest = max(deepest, level)
            if self.axis[node] != LEAF:
                stack.append((self.left[node], level + 1))
                stack.append((self.right[node], level + 1))
        return deepest

    def nearest(self, query_point):
        """
        Find the closest indexed point.

        Equal distances resolve to the lowest index in the input cloud.

        Args:
            query_point: 3-vector

        Returns:
            Tuple of (index, squared_distance), or None if the tree is empty
        """
        if not len(self):
            return None
        query = np.asarray(query_point, dtype=np.float64).reshape(3)

        best_index = -1
        best_dist = np.inf
        # (node, lower bound on the squared distance to any point below it)
        stack = [(0, 0.0)]

        while stack:
            node, bound = stack.pop()
            if bound > best_dist:
                continue
            axis = self.axis[node]

            # Leaf: scan its points
            if axis == LEAF:
                start, end = self.start[node], self.end[node]
                diff = self._sorted[start:end] - query
                dists = np.einsum("ij,ij->i", diff, diff)
                local = dists.min()
                if local <= best_dist:
                    candidates = self.order[start:end][dists == local]
                    candidate = int(candidates.min())
                    if local < best_dist or candidate < best_index:
                        best_index, best_dist = candidate, float(local)
                continue

            delta = query[axis] - self.split[node]
            if delta < 0:
                near_node, far_node = self.left[node], self.right[node]
            else:
                near_node, far_node = self.right[node], self.left[node]

            # Far side first so the near side is popped next
            far_bound = max(bound, delta * delta)
            if far_bound <= best_dist:
                stack.append((far_node, far_bound))
            stack.append((near_node, bound))

        return best_index, best_dist

    def query(self, query_points):
        """
        Nearest neighbours for every row of an (M, 3) array.

        Returns:
            Tuple of (indices, squared_distances) arrays of length M
        """
        query_points = np.asarray(query_points, dtype=np.float64).reshape(-1, 3)
        indices = np.empty(query_points.shape[0], dtype=np.int64)
        sq_distances = np.empty(query_points.shape[0], dtype=np.float64)
        for i, point in enumerate(query_points):
            indices[i], sq_distances[i] = self.nearest(point)
        return indices, sq_distances
