"""
cloudreg - Rigid point cloud registration using Iterative Closest Point (ICP)

A point cloud registration library featuring:
- Arena KD-Tree for nearest neighbor search
- Point-to-point (Kabsch) and point-to-plane transform estimation
- Distance and normal-angle correspondence rejection, robust weights
- Cancellable, deadline-bounded ICP with parallel correspondence search
"""

from .config import ICPConfig
from .correspondences import Correspondence, Correspondences, find_correspondences
from .estimators import Estimate, Variant, estimate, estimate_point_to_plane, estimate_point_to_point
from .exceptions import (Cancelled, DegenerateConfiguration, EmptyCloud,
                         InsufficientCorrespondences, InvalidConfiguration,
                         MissingNormals, NumericalInstability, RegistrationError)
from .icp import ICPRegistration, ICPResult, ICPState, register
from .kdtree import KDTree
from .point_cloud import PointCloud
from .transforms import RigidTransform

__version__ = "1.0.0"
__all__ = [
    "ICPConfig", "ICPRegistration", "ICPResult", "ICPState", "register",
    "KDTree", "PointCloud", "RigidTransform",
    "Correspondence", "Correspondences", "find_correspondences",
    "Estimate", "Variant", "estimate", "estimate_point_to_point", "estimate_point_to_plane",
    "RegistrationError", "EmptyCloud", "InsufficientCorrespondences",
    "DegenerateConfiguration", "MissingNormals", "InvalidConfiguration",
    "Cancelled", "NumericalInstability",
]
