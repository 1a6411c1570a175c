"""Error taxonomy for the reconciler."""

from typing import Optional


class ReconcilerError(Exception):
    """Base class for all reconciler errors."""

    pass


class DescriptorError(ReconcilerError):
    """Raised when a descriptor or manifest file cannot be parsed."""

    pass


class ValidationError(ReconcilerError):
    """Raised when a resource set fails validation before any apply call."""

    pass


class DuplicateResource(ValidationError):
    """Raised when two resources share the same kind, namespace and name."""

    def __init__(self, kind: str, namespace: Optional[str], name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"Duplicate {kind} {location}")


class UnresolvedReference(ValidationError):
    """Raised when a reference does not resolve within the submitted set."""

    def __init__(self, referrer: str, target: str, detail: str):
        self.referrer = referrer
        self.target = target
        super().__init__(f"{referrer} references {target}: {detail}")


class CycleError(ReconcilerError):
    """Raised when resource references form a cycle."""

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Reference cycle detected: {' -> '.join(path)}")


class ApiError(ReconcilerError):
    """
    Raised by a cluster API call that failed.

    Only the HTTP status and reason phrase are kept; response bodies may echo
    request payloads (including Secret data) and are never stored.
    """

    def __init__(self, status: Optional[int], reason: Optional[str]):
        self.status = status
        self.reason = reason or "Unknown error"
        super().__init__(f"{status} {self.reason}" if status else self.reason)


class RolloutTimeout(ReconcilerError):
    """Raised when a rollout did not become healthy before its deadline."""

    pass


class RolloutCancelled(ReconcilerError):
    """Raised when waiting for a rollout was cancelled by the caller."""

    pass


class RolloutDegraded(ReconcilerError):
    """Raised when a rollout has pods stuck in a failing state."""

    pass
