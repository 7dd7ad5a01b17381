"""Domain exceptions for the competition engine."""


class CompeteError(Exception):
    """Base class for engine errors."""


class ConfigurationError(CompeteError, RuntimeError):
    """Required configuration is missing or the engine was not initialized.

    Fatal for a whole status-update invocation.
    """


class InvalidTransitionError(CompeteError, ValueError):
    """A competition status change that is not a forward lifecycle step."""

    def __init__(self, current_status: str, target_status: str, valid: list[str]) -> None:
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )
