"""Domain errors for fleetship."""


class DeployError(RuntimeError):
    """Raised when a deployment step cannot continue safely."""
