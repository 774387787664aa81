"""Exception types raised by stickplan."""


class StickplanError(Exception):
    """Base class for all stickplan errors."""
    pass


class CollaboratorIOError(StickplanError):
    """Raised when a mount, measure or unmount primitive fails or times out.

    Planning never coerces this into a size of zero; the planner reports it
    as an IMPOSSIBLE plan with the MEASUREMENT_FAILED reason.
    """

    def __init__(self, message: str, target: str = None):
        super().__init__(message)
        self.target = target


class MountError(CollaboratorIOError):
    """Raised when a partition or image could not be mounted."""
    pass


class UnmountError(CollaboratorIOError):
    """Raised when a mount point could not be released."""
    pass


class ConfigValidationError(StickplanError):
    """Raised when a stickplan.yml file is malformed or has invalid values."""
    pass
