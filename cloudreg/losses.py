"""Robust weighting functions for outlier handling in ICP."""

import numbers

import numpy as np

from .exceptions import InvalidConfiguration


def huber_loss_weights(residuals, delta=1.0):
    """
    Compute Huber loss weights for robust estimation.

    Quadratic penalty up to ``delta``, linear beyond it.

    Args:
        residuals: Array of correspondence distances
        delta: Threshold for switching from quadratic to linear

    Returns:
        Array of weights in (0, 1] for each correspondence
    """
    weights = np.ones_like(residuals, dtype=np.float64)
    outlier_mask = residuals > delta
    weights[outlier_mask] = delta / residuals[outlier_mask]
    return weights


def tukey_loss_weights(residuals, c=4.685):
    """
    Compute Tukey biweight loss weights for robust estimation.

    Correspondences beyond ``c`` get zero weight.

    Args:
        residuals: Array of correspondence distances
        c: Tuning constant (4.685 for 95% efficiency)

    Returns:
        Array of weights in [0, 1] for each correspondence
    """
    normalized = residuals / c
    weights = np.zeros_like(residuals, dtype=np.float64)
    inlier_mask = normalized <= 1.0
    weights[inlier_mask] = (1 - normalized[inlier_mask] ** 2) ** 2
    return weights


def percentile_filter_weights(residuals, percentile=90):
    """Binary weights keeping only correspondences up to the given distance percentile."""
    threshold = np.percentile(residuals, percentile)
    return (residuals <= threshold).astype(np.float64)


LOSS_FUNCTIONS = {
    'huber': (huber_loss_weights, 'delta', 1.0),
    'tukey': (tukey_loss_weights, 'c', 4.685),
    'percentile': (percentile_filter_weights, 'percentile', 90),
}


def get_loss_function(loss_fn='none', loss_params=None):
    """
    Get a weighting function with its parameters bound.

    Args:
        loss_fn: One of 'none', 'huber', 'tukey', 'percentile'
        loss_params: Dictionary of loss-specific parameters

    Returns:
        Callable mapping distances to weights, or None for 'none'
    """
    if loss_fn is None or loss_fn == 'none':
        return None
    if not isinstance(loss_fn, str) or loss_fn not in LOSS_FUNCTIONS:
        raise InvalidConfiguration(f"Unknown loss function: {loss_fn}")

    func, name, default = LOSS_FUNCTIONS[loss_fn]
    loss_params = dict(loss_params or {})
    unknown = set(loss_params) - {name}
    if unknown:
        raise InvalidConfiguration(
            f"Unknown parameters for {loss_fn} loss: {', '.join(sorted(unknown))}"
        )
    value = loss_params.get(name, default)
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidConfiguration(f"{name} must be a number, got {value!r}")
    if loss_fn == 'percentile':
        if not 0 < value <= 100:
            raise InvalidConfiguration(f"percentile must be in (0, 100], got {value}")
    elif not value > 0:
        raise InvalidConfiguration(f"{name} must be positive, got {value}")

    def weights(residuals):
        return func(np.asarray(residuals, dtype=np.float64), **{name: value})

    weights.__name__ = f"{loss_fn}_weights"
    return weights
