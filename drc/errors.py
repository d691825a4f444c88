from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for everything the reconciler raises on purpose."""


class InvalidAttribute(ReconcilerError):
    def __init__(self, resource_id: str, attribute: str, message: str):
        super().__init__(f"{resource_id}: invalid '{attribute}': {message}")
        self.resource_id = resource_id
        self.attribute = attribute


class CyclicDependency(ReconcilerError):
    def __init__(self, cycle: list[str]):
        super().__init__("Dependency cycle between: " + ", ".join(cycle))
        self.cycle = cycle


class DaemonError(ReconcilerError):
    """A daemon call failed. `retryable` tells whether a plain re-run may succeed."""

    retryable = False


class DaemonTransportError(DaemonError):
    retryable = True


class DaemonSemanticError(DaemonError):
    retryable = False
