"""Iterative Closest Point (ICP) registration engine."""

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .config import ICPConfig
from .correspondences import find_correspondences
from .estimators import Variant, estimate
from .exceptions import Cancelled, MissingNormals, RegistrationError
from .kdtree import KDTree
from .losses import get_loss_function
from .point_cloud import as_point_cloud
from .transforms import RigidTransform

logger = logging.getLogger(__name__)


class ICPState(enum.Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class ICPResult:
    """Outcome of a registration run that did not fail."""
    transform: RigidTransform
    iterations: int
    residual: float
    converged: bool
    state: ICPState
    stop_reason: str
    residual_history: Tuple[float, ...] = ()


class ICPRegistration:
    """
    Rigid ICP registration of a source cloud onto a target cloud.

    The target is indexed once at construction. ``run`` then iterates
    correspondence search, transform estimation and composition until the
    residual converges or rises, the iteration budget or wall-time deadline is
    used up, cancellation is requested, or an error stops the run. Every
    stopped run reports the lowest-residual estimate it reached.
    """

    def __init__(self, source, target, config: Optional[ICPConfig] = None):
        """
        Initialize ICP registration.

        Args:
            source: PointCloud or (N, 3) array to be moved
            target: PointCloud or (M, 3) array to align onto
            config: ICPConfig, defaults are used when omitted

        Raises:
            EmptyCloud: if the target has no points
            InvalidConfiguration: if the config is invalid
        """
        self.source = as_point_cloud(source)
        self.target = as_point_cloud(target)
        self.config = (config or ICPConfig()).validate()

        self.tree = KDTree.build(self.target)
        self._state = ICPState.INITIALIZED
        self._residuals = []
        self._transforms = []
        self._failure = None

    @property
    def state(self):
        return self._state

    @property
    def residual_history(self):
        """Per-iteration residuals of the latest run."""
        return tuple(self._residuals)

    @property
    def transform_history(self):
        """Running estimate before the first and after every iteration."""
        return tuple(self._transforms)

    @property
    def failure(self):
        return self._failure

    def initial_estimate(self):
        if self.config.initial_transform is not None:
            return self.config.initial_transform
        if self.config.align_centroids and len(self.source):
            return RigidTransform.from_translation(self.target.centroid() - self.source.centroid())
        return RigidTransform.identity()

    def run(self, cancel_event=None):
        """
        Run ICP registration.

        Args:
            cancel_event: Optional object with ``is_set()`` (e.g.
                threading.Event), checked before every iteration

        Returns:
            ICPResult; ``converged`` is True only for the CONVERGED state

        Raises:
            Cancelled: if cancellation was already requested before any work
            MissingNormals: point-to-plane requested without target normals
            RegistrationError: any error that stopped an iteration; it carries
                the transform accumulated so far and the completed iteration count
        """
        config = self.config
        self._residuals = []
        self._transforms = []
        self._failure = None

        if config.variant is Variant.POINT_TO_PLANE and not self.target.has_normals:
            self._state = ICPState.FAILED
            self._failure = MissingNormals("Point-to-plane ICP requires normals on the target cloud")
            raise self._failure
        if cancel_event is not None and cancel_event.is_set():
            self._state = ICPState.FAILED
            self._failure = Cancelled("Registration cancelled before it started")
            raise self._failure

        weight_fn = get_loss_function(config.loss, config.loss_params)
        use_normals = config.variant is Variant.POINT_TO_PLANE
        target_normals = self.target.normals if use_normals else None
        source_normals = self.source.normals if use_normals else None

        logger.info("ICP %s: %d source points, %d target points",
                    config.variant.value, len(self.source), len(self.target))

        start_time = time.monotonic()
        deadline = None if config.max_wall_time is None else start_time + config.max_wall_time

        current = self.initial_estimate()
        self._transforms.append(current)
        best_transform, best_residual = current, math.inf
        previous = None
        stop_reason = "max_iterations"
        self._state = ICPState.ITERATING

        for iteration in range(1, config.max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                stop_reason = "cancelled"
                break
            if deadline is not None and time.monotonic() >= deadline:
                stop_reason = "deadline"
                break

            try:
                # Move a copy; the caller's cloud is never touched
                moved = current.apply(self.source.points)
                moved_normals = current.rotate(source_normals) if source_normals is not None else None

                matches = find_correspondences(
                    moved, self.tree,
                    max_distance=config.max_correspondence_distance,
                    source_normals=moved_normals,
                    target_normals=target_normals,
                    max_normal_angle=config.normal_angle_threshold if use_normals else None,
                    min_correspondences=config.min_correspondences,
                    n_jobs=config.n_jobs,
                    chunk_size=config.chunk_size,
                )

                weights = weight_fn(matches.distances) if weight_fn is not None else None

                step = estimate(
                    config.variant,
                    moved[matches.source_indices],
                    self.tree.points[matches.target_indices],
                    target_normals=target_normals[matches.target_indices] if use_normals else None,
                    weights=weights,
                )
                current = step.transform.compose(current, tolerance=config.orthonormality_tolerance)
            except RegistrationError as exc:
                self._fail(exc, current, iteration - 1)
                raise

            residual = step.residual
            self._residuals.append(residual)
            self._transforms.append(current)
            if residual <= best_residual:
                best_transform, best_residual = current, residual

            logger.debug("Iter %3d: residual=%.6g | correspondences=%d/%d",
                         iteration, residual, len(matches), len(self.source))

            change = None if previous is None else previous - residual
            if residual <= config.residual_tolerance or \
                    (change is not None and abs(change) < config.convergence_epsilon):
                self._state = ICPState.CONVERGED
                return self._result(best_transform, best_residual, "converged", start_time)
            if change is not None and change < 0:
                logger.debug("Residual rose from %.6g to %.6g, stopping", previous, residual)
                stop_reason = "residual_increased"
                break
            previous = residual

        self._state = ICPState.MAX_ITERATIONS_REACHED
        residual = best_residual if self._residuals else float("nan")
        return self._result(best_transform, residual, stop_reason, start_time)

    def _fail(self, exc, transform, iterations):
        exc.transform = transform
        exc.iterations = iterations
        self._state = ICPState.FAILED
        self._failure = exc
        logger.warning("ICP failed after %d iterations: [%s] %s", iterations, exc.code, exc)

    def _result(self, transform, residual, stop_reason, start_time):
        result = ICPResult(
            transform=transform,
            iterations=len(self._residuals),
            residual=residual,
            converged=self._state is ICPState.CONVERGED,
            state=self._state,
            stop_reason=stop_reason,
            residual_history=self.residual_history,
        )
        history = self._residuals
        logger.info(
            "ICP finished (%s) after %d iterations in %.3fs: residual %.6g -> %.6g",
            stop_reason, result.iterations, time.monotonic() - start_time,
            history[0] if history else float("nan"), residual,
        )
        return result


def register(source, target, config: Optional[ICPConfig] = None, cancel_event=None) -> ICPResult:
    """
    Align ``source`` onto ``target`` and return the registration outcome.

    See ``ICPRegistration.run`` for the errors that can be raised.
    """
    return ICPRegistration(source, target, config).run(cancel_event=cancel_event)

