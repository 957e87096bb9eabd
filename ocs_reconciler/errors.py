"""Exceptions raised by the StorageCluster reconciler."""


class ReconcileError(Exception):
    """
    Base class for reconcile pass failures.

    The reconciler never retries on its own. The ``retryable`` flag only tells
    the invoking dispatcher whether the failure is expected to clear by itself
    (dependency not ready, endpoint briefly down) or needs an administrator.
    """

    retryable: bool = False


class DependencyNotReadyError(ReconcileError):
    """A resource the current step depends on is not Ready yet."""

    retryable = True

    def __init__(self, kind: str, name: str, reason: str):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"{kind} {name!r} {reason}")


class ExternalResourceError(ReconcileError):
    """The external cluster details secret is missing or malformed."""


class EndpointUnreachableError(ExternalResourceError):
    """An endpoint published in the external cluster details is not reachable."""

    retryable = True

    def __init__(self, endpoint: str, cause: Exception):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"endpoint {endpoint} is not reachable: {cause}")


class MarkedForDeletionError(ReconcileError):
    """An object that should be restored is already being deleted."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(
            f"failed to restore {kind} {name} because it is marked for deletion"
        )
