"""Error taxonomy for provisioning runs."""


class ShipItError(Exception):
    """Base class for all ship-it errors."""


class ValidationError(ShipItError):
    """The provider credential is missing, malformed or expired."""


class ProviderError(ShipItError):
    """A cloud provider call failed. Carries the provider's own message."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProvisionTimeoutError(ShipItError, TimeoutError):
    """A poll loop exceeded its wall-clock budget."""

    def __init__(self, what, timeout):
        super().__init__(f"{what} timed out after {timeout:g}s")
        self.timeout = timeout


class RemoteExecError(ShipItError):
    """A remote command or connection failed."""


class ToolError(ShipItError):
    """The external deploy tool exited non-zero."""

    def __init__(self, message, exit_code=1):
        super().__init__(message)
        self.exit_code = exit_code


class StepError(ShipItError):
    """A pipeline step failed. The message is prefixed with the step's display name."""

    def __init__(self, step_id, step_name, cause):
        super().__init__(f"{step_name}: {cause}")
        self.step_id = step_id
        self.step_name = step_name
        self.cause = cause

    @property
    def is_timeout(self) -> bool:
        return isinstance(self.cause, ProvisionTimeoutError)
