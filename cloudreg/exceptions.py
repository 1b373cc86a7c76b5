"""Error taxonomy for point cloud registration."""


class RegistrationError(Exception):
    """Base class for every error a registration run can surface.

    The engine attaches the transform accumulated before the failure and the
    number of completed iterations to ``transform`` and ``iterations``.
    """

    code = "registration_error"

    def __init__(self, message: str, context: str = ""):
        super().__init__(message)
        self.context = context
        self.transform = None
        self.iterations = 0


class EmptyCloud(RegistrationError):
    code = "empty_cloud"


class InsufficientCorrespondences(RegistrationError):
    code = "insufficient_correspondences"


class DegenerateConfiguration(RegistrationError):
    code = "degenerate_configuration"


class MissingNormals(RegistrationError):
    code = "missing_normals"


class InvalidConfiguration(RegistrationError):
    code = "invalid_configuration"


class Cancelled(RegistrationError):
    code = "cancelled"


class NumericalInstability(RegistrationError):
    code = "numerical_instability"
