import numpy as np
import pytest

from cloudreg.exceptions import InvalidConfiguration
from cloudreg.losses import (get_loss_function, huber_loss_weights,
                             percentile_filter_weights, tukey_loss_weights)


@pytest.fixture
def residuals():
    return np.array([0.0, 0.5, 1.0, 2.0, 4.0])


def test_huber_weights(residuals):
    np.testing.assert_allclose(huber_loss_weights(residuals, delta=1.0), [1.0, 1.0, 1.0, 0.5, 0.25])


def test_tukey_weights(residuals):
    weights = tukey_loss_weights(residuals, c=2.0)
    np.testing.assert_allclose(weights, [1.0, (1 - 0.0625) ** 2, 0.5625, 0.0, 0.0])


def test_percentile_weights(residuals):
    np.testing.assert_array_equal(percentile_filter_weights(residuals, percentile=50), [1, 1, 1, 0, 0])


def test_get_loss_function_binds_params(residuals):
    assert get_loss_function('none') is None
    assert get_loss_function(None) is None

    weights = get_loss_function('huber', {'delta': 2.0})
    np.testing.assert_allclose(weights(residuals), [1.0, 1.0, 1.0, 1.0, 0.5])

    # Defaults apply when parameters are omitted
    np.testing.assert_allclose(get_loss_function('tukey')(residuals),
                               tukey_loss_weights(residuals))


@pytest.mark.parametrize("loss_fn, params", [
    ('cauchy', None),
    ('huber', {'c': 1.0}),
    ('huber', {'delta': 0.0}),
    ('tukey', {'c': -1.0}),
    ('percentile', {'percentile': 0}),
    ('percentile', {'percentile': 150}),
])
def test_invalid_loss_settings(loss_fn, params):
    with pytest.raises(InvalidConfiguration):
        get_loss_function(loss_fn, params)
