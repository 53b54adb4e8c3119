"""Exceptions raised by the registry core."""


class RegistryError(Exception):
    """Base class for registry errors."""


class InvalidRequest(RegistryError, ValueError):
    """Rejected before any side effect: bad path, empty group name, unknown entry."""


class UnknownEntry(InvalidRequest):
    """The path or group is not registered."""


class CompletionTimeout(RegistryError, TimeoutError):
    """No completion event arrived in time."""

    def __init__(self, kind: str, timeout: float):
        super().__init__(f"No {kind} received within {timeout:g}s")
        self.kind = kind
        self.timeout = timeout


class OperationFailed(RegistryError):
    """A filesystem primitive reported failure."""


__all__ = ["CompletionTimeout", "InvalidRequest", "OperationFailed", "RegistryError", "UnknownEntry"]
