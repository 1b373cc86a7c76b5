import numpy as np
import pytest

from cloudreg.transforms import RigidTransform


def rotation_z(degrees):
    theta = np.deg2rad(degrees)
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def grid_cloud(rng):
    # 5x4x3 lattice with unit spacing, jittered by at most 0.15 and centred on
    # the origin, so nearest neighbours are at least 0.7 apart
    axes = np.meshgrid(np.arange(5), np.arange(4), np.arange(3), indexing="ij")
    points = np.stack([a.ravel() for a in axes], axis=1).astype(np.float64)
    points += rng.uniform(-0.15, 0.15, size=points.shape)
    return points - points.mean(axis=0)


@pytest.fixture
def small_motion():
    # 3 degrees about a skew axis plus a few centimetres: no point of the
    # grid moves more than about 0.2
    axis = np.array([1.0, 2.0, 3.0])
    axis /= np.linalg.norm(axis)
    return RigidTransform.from_rotation_vector(np.deg2rad(3.0) * axis, [0.05, -0.03, 0.02])


@pytest.fixture
def random_normals(rng, grid_cloud):
    normals = rng.normal(size=grid_cloud.shape)
    return normals / np.linalg.norm(normals, axis=1, keepdims=True)


@pytest.fixture
def unit_cube():
    return np.array([[x, y, z] for x in (0.0, 1.0) for y in (0.0, 1.0) for z in (0.0, 1.0)])


@pytest.fixture
def box_cloud(rng):
    # Anisotropic random cloud for runs that need several iterations
    return rng.uniform([-2.0, -1.0, -0.5], [2.0, 1.0, 0.5], size=(300, 3))
