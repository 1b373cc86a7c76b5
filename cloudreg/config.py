"""Configuration for ICP registration runs."""

import math
import numbers
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from .estimators import MIN_PAIRS, Variant
from .exceptions import InvalidConfiguration
from .losses import get_loss_function
from .transforms import RigidTransform, as_rigid_transform


@dataclass
class ICPConfig:
    """Options recognised by ``register``."""
    max_iterations: int = 50
    convergence_epsilon: float = 1e-6      # stop once residual improves by less than this
    residual_tolerance: float = 1e-10      # stop once residual itself is below this
    max_correspondence_distance: float = math.inf
    normal_angle_threshold: float = 45.0   # degrees, point-to-plane only
    variant: Variant = Variant.POINT_TO_POINT
    initial_transform: Optional[RigidTransform] = None
    align_centroids: bool = False
    min_correspondences: int = MIN_PAIRS
    loss: str = "none"
    loss_params: Dict[str, float] = field(default_factory=dict)
    n_jobs: int = 1
    chunk_size: int = 2048
    max_wall_time: Optional[float] = None  # seconds
    orthonormality_tolerance: float = 1e-9

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "ICPConfig":
        """Build a validated config from a plain mapping, e.g. parsed JSON."""
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise InvalidConfiguration(f"Unknown options: {', '.join(sorted(unknown))}")
        return cls(**options).validate()

    def replace(self, **changes) -> "ICPConfig":
        return replace(self, **changes).validate()

    def validate(self) -> "ICPConfig":
        """
        Check every option and normalise variant and initial transform.

        The instance itself is left untouched.

        Returns:
            A validated copy with ``variant`` as a Variant and
            ``initial_transform`` as a RigidTransform (or None)

        Raises:
            InvalidConfiguration: on the first invalid option
        """
        _check_integer("max_iterations", self.max_iterations, minimum=1)

        for name in ("convergence_epsilon", "residual_tolerance", "max_correspondence_distance"):
            value = getattr(self, name)
            if not _is_real(value) or math.isnan(value) or value < 0:
                raise InvalidConfiguration(f"{name} must be a non-negative number, got {value!r}")

        if not _is_real(self.normal_angle_threshold) or \
                not 0.0 <= self.normal_angle_threshold <= 180.0:
            raise InvalidConfiguration(
                f"normal_angle_threshold must be within [0, 180] degrees, "
                f"got {self.normal_angle_threshold!r}"
            )

        try:
            variant = Variant.parse(self.variant)
        except ValueError:
            raise InvalidConfiguration(f"Unknown variant: {self.variant!r}") from None

        initial_transform = self.initial_transform
        if initial_transform is not None:
            try:
                initial_transform = as_rigid_transform(initial_transform)
            except ValueError as exc:
                raise InvalidConfiguration(f"Invalid initial_transform: {exc}") from None
            if not initial_transform.is_orthonormal():
                raise InvalidConfiguration("initial_transform rotation must be orthonormal with det +1")

        _check_integer("min_correspondences", self.min_correspondences, minimum=MIN_PAIRS)

        get_loss_function(self.loss, self.loss_params)

        _check_integer("n_jobs", self.n_jobs)
        if self.n_jobs == 0:
            raise InvalidConfiguration("n_jobs must be non-zero")
        _check_integer("chunk_size", self.chunk_size, minimum=1)
        if self.max_wall_time is not None and \
                (not _is_real(self.max_wall_time) or not self.max_wall_time > 0):
            raise InvalidConfiguration(f"max_wall_time must be positive, got {self.max_wall_time!r}")
        if not _is_real(self.orthonormality_tolerance) or not self.orthonormality_tolerance > 0:
            raise InvalidConfiguration(
                f"orthonormality_tolerance must be positive, got {self.orthonormality_tolerance!r}"
            )
        return replace(self, variant=variant, initial_transform=initial_transform,
                       loss_params=dict(self.loss_params or {}))


def _is_real(value):
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _check_integer(name, value, minimum=None):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise InvalidConfiguration(f"{name} must be at least {minimum}, got {value!r}")
