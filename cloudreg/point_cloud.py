"""Point cloud data management and preprocessing."""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def _as_xyz(array, name):
    array = np.asarray(array, dtype=np.float64)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {array.shape}")
    return array


def _readonly(array):
    array = np.ascontiguousarray(array)
    array.flags.writeable = False
    return array


class PointCloud:
    """
    Read-only collection of 3D points with optional per-point unit normals.

    Rows holding NaN/Inf coordinates, or normals that are non-finite or of
    zero length, are dropped on construction. ``indices`` maps every kept
    row back to its row number in the arrays the cloud was built from.
    """

    def __init__(self, points, normals=None):
        """
        Args:
            points: (N, 3) array of coordinates
            normals: Optional (N, 3) array of normals, one per point
        """
        points = _as_xyz(points, "points")
        valid = np.all(np.isfinite(points), axis=1)

        if normals is not None:
            normals = _as_xyz(normals, "normals")
            if normals.shape[0] != points.shape[0]:
                raise ValueError(
                    f"Expected {points.shape[0]} normals, got {normals.shape[0]}"
                )
            lengths = np.linalg.norm(normals, axis=1)
            valid &= np.all(np.isfinite(normals), axis=1) & (lengths > 1e-12)

        n_dropped = int(np.count_nonzero(~valid))
        if n_dropped:
            logger.warning("Dropped %d of %d points with invalid coordinates or normals",
                           n_dropped, points.shape[0])

        self.indices = _readonly(np.flatnonzero(valid))
        self.points = _readonly(points[valid])
        self.normals = None
        if normals is not None:
            kept = normals[valid]
            self.normals = _readonly(kept / np.linalg.norm(kept, axis=1, keepdims=True))

    @classmethod
    def from_o3d(cls, o3d_pcd):
        """Build from an Open3D PointCloud, keeping its normals if present."""
        points = np.asarray(o3d_pcd.points)
        normals = np.asarray(o3d_pcd.normals) if o3d_pcd.has_normals() else None
        return cls(points, normals)

    def to_o3d(self, color=None):
        """
        Convert to an Open3D PointCloud object.

        Args:
            color: Optional uniform color [r, g, b]
        """
        import open3d as o3d

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if self.normals is not None:
            pcd.normals = o3d.utility.Vector3dVector(self.normals)
        if color is not None:
            pcd.paint_uniform_color(color)
        return pcd

    @property
    def has_normals(self):
        return self.normals is not None

    def centroid(self):
        return self.points.mean(axis=0)

    def transformed(self, transform):
        """New cloud with points (and normals) moved by a RigidTransform."""
        normals = transform.rotate(self.normals) if self.has_normals else None
        return PointCloud(transform.apply(self.points), normals)

    def with_normals(self, normals):
        return PointCloud(self.points, normals)

    def estimate_normals(self, k=30, camera_location=(0.0, 0.0, 0.0)):
        """
        Estimate normals from the k nearest neighbours with Open3D.

        Normals are oriented towards ``camera_location``.

        Returns:
            New PointCloud carrying the estimated normals
        """
        import open3d as o3d

        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamKNN(knn=k))
        pcd.orient_normals_towards_camera_location(
            camera_location=np.asarray(camera_location, dtype=np.float64)
        )
        return self.with_normals(np.asarray(pcd.normals))

    def voxel_downsample(self, voxel_size):
        """
        Downsample with a voxel grid, replacing each occupied voxel by the
        mean of its points (and the re-normalized mean of its normals). A voxel
        whose normals cancel out keeps the normal of its first point.
        """
        if voxel_size <= 0:
            raise ValueError(f"voxel_size must be positive, got {voxel_size}")
        if len(self) == 0:
            return self

        min_bound = self.points.min(axis=0)
        voxel_indices = np.floor((self.points - min_bound) / voxel_size).astype(np.int64)
        _, first, inverse, counts = np.unique(voxel_indices, axis=0, return_index=True,
                                              return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)

        sums = np.zeros((counts.shape[0], 3))
        np.add.at(sums, inverse, self.points)
        points = sums / counts[:, np.newaxis]

        normals = None
        if self.has_normals:
            normals = np.zeros((counts.shape[0], 3))
            np.add.at(normals, inverse, self.normals)
            cancelled = np.linalg.norm(normals, axis=1) <= 1e-6 * counts
            normals[cancelled] = self.normals[first[cancelled]]
        return PointCloud(points, normals)

    def __len__(self):
        return self.points.shape[0]

    def __repr__(self):
        return f"PointCloud(n={len(self)}, normals={self.has_normals})"


def as_point_cloud(cloud):
    """Accept a PointCloud or anything array-like of shape (N, 3)."""
    if isinstance(cloud, PointCloud):
        return cloud
    return PointCloud(cloud)
