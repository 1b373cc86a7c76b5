import numpy as np
import pytest

from cloudreg.exceptions import NumericalInstability
from cloudreg.transforms import RigidTransform, as_rigid_transform, orthonormalize, rotation_from_vector

from .conftest import rotation_z


@pytest.fixture
def transform_a():
    return RigidTransform.from_rotation_vector([0.3, -0.2, 0.5], [1.0, 2.0, 3.0])


@pytest.fixture
def transform_b():
    return RigidTransform.from_rotation_vector([-1.1, 0.4, 0.2], [-0.5, 0.0, 4.0])


def test_identity_leaves_points_unchanged(rng):
    points = rng.normal(size=(10, 3))
    np.testing.assert_allclose(RigidTransform.identity().apply(points), points)


def test_composition_equals_sequential_application(rng, transform_a, transform_b):
    points = rng.normal(size=(25, 3))
    sequential = transform_a.apply(transform_b.apply(points))

    np.testing.assert_allclose(transform_a.compose(transform_b).apply(points), sequential, atol=1e-12)
    np.testing.assert_allclose((transform_a @ transform_b).apply(points), sequential, atol=1e-12)
    np.testing.assert_allclose(transform_b.then(transform_a).apply(points), sequential, atol=1e-12)


def test_composition_matches_matrix_product(transform_a, transform_b):
    np.testing.assert_allclose((transform_a @ transform_b).as_matrix(),
                               transform_a.as_matrix() @ transform_b.as_matrix(), atol=1e-12)


def test_inverse_round_trips(rng, transform_a):
    points = rng.normal(size=(5, 3))
    np.testing.assert_allclose(transform_a.inverse().apply(transform_a.apply(points)), points, atol=1e-12)
    assert (transform_a @ transform_a.inverse()).allclose(RigidTransform.identity(), atol=1e-12)


def test_rotate_ignores_translation(transform_a):
    vector = np.array([0.0, 0.0, 1.0])
    np.testing.assert_allclose(transform_a.rotate(vector), transform_a.rotation @ vector)


def test_rotation_vector_gives_proper_rotation():
    for vector in ([0.0, 0.0, 0.0], [1e-14, 0.0, 0.0], [0.0, 0.0, np.pi / 6], [2.0, -1.0, 0.5]):
        transform = RigidTransform.from_rotation_vector(vector)
        assert transform.is_orthonormal(1e-12)
        assert transform.determinant() == pytest.approx(1.0)
        assert transform.rotation_angle() == pytest.approx(np.linalg.norm(vector), abs=1e-12)


def test_rotation_vector_about_z_matches_closed_form():
    np.testing.assert_allclose(rotation_from_vector([0.0, 0.0, np.deg2rad(30.0)]), rotation_z(30.0), atol=1e-12)


def test_compose_re_orthonormalizes_drift():
    drifted = RigidTransform(rotation_z(10.0) + 1e-6 * np.array([[0.0, 1.0, 0.0],
                                                                  [0.0, 0.0, 0.0],
                                                                  [0.0, 0.0, 0.0]]), [0.0, 0.0, 0.0])
    assert not drifted.is_orthonormal(1e-9)

    composed = drifted @ RigidTransform.identity()
    assert composed.is_orthonormal(1e-12)
    assert composed.determinant() == pytest.approx(1.0)
    np.testing.assert_allclose(composed.rotation, rotation_z(10.0), atol=1e-5)


def test_compose_rejects_non_finite_rotation():
    broken = RigidTransform(np.full((3, 3), np.nan), [0.0, 0.0, 0.0])
    with pytest.raises(NumericalInstability):
        broken @ RigidTransform.identity()


def test_orthonormalize_never_returns_reflection():
    reflection = np.diag([1.0, 1.0, -1.0])
    assert np.linalg.det(orthonormalize(reflection)) == pytest.approx(1.0)


def test_orthonormalized_respects_tolerance():
    drifted = RigidTransform(rotation_z(10.0) + 1e-6 * np.array([[0.0, 1.0, 0.0],
                                                                  [0.0, 0.0, 0.0],
                                                                  [0.0, 0.0, 0.0]]), [1.0, 2.0, 3.0])

    assert drifted.orthonormalized(tolerance=1e-3) is drifted

    restored = drifted.orthonormalized()
    assert restored.is_orthonormal(1e-12)
    np.testing.assert_array_equal(restored.translation, [1.0, 2.0, 3.0])


def test_transform_is_immutable(transform_a):
    with pytest.raises(ValueError):
        transform_a.rotation[0, 0] = 2.0
    with pytest.raises(AttributeError):
        transform_a.translation = np.zeros(3)


def test_from_matrix(transform_a):
    assert RigidTransform.from_matrix(transform_a.as_matrix()).allclose(transform_a)
    with pytest.raises(ValueError):
        RigidTransform.from_matrix(np.eye(3))


def test_as_rigid_transform_coercion(transform_a):
    assert as_rigid_transform(None).allclose(RigidTransform.identity())
    assert as_rigid_transform(transform_a) is transform_a
    assert as_rigid_transform(transform_a.as_matrix()).allclose(transform_a)
