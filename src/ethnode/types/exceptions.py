"""Exception hierarchy for node supervision."""

from __future__ import annotations


class EthnodeError(Exception):
    """
    Base exception for all ethnode errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class EngineError(EthnodeError):
    """
    Raised when a call to the container engine fails.

    Attributes:
        operation: Engine operation that failed (e.g., "create_container").
        target: Container, network, volume or image the call addressed.
        detail: Engine-supplied explanation.
    """

    def __init__(self, operation: str, target: str, detail: str) -> None:
        self.operation = operation
        self.target = target
        self.detail = detail
        super().__init__(f"{operation} failed for {target}: {detail}")


class ResourceNotFoundError(EngineError):
    """Raised when the addressed engine resource does not exist."""


class ResourceConflictError(EngineError):
    """Raised when the engine refuses a create because the resource already exists."""


class ContainerError(EthnodeError):
    """
    Domain-level container failure.

    Covers a helper container exiting non-zero, a missing container id
    where one is required, and reconfiguring a node that still owns a container.
    """


class NodeUnresponsiveError(EthnodeError):
    """
    Raised when a node never became healthy within its readiness budget.

    Attributes:
        node: Name of the node.
        attempts: Number of probes performed.
        last_reason: Reason reported by the final probe.
    """

    def __init__(self, node: str, attempts: int, last_reason: str | None) -> None:
        self.node = node
        self.attempts = attempts
        self.last_reason = last_reason
        super().__init__(
            f"{node} failed to become healthy after {attempts} attempts (last: {last_reason})"
        )


class NodeUnhealthyError(EthnodeError):
    """
    Raised when a supervised node turns unhealthy after having been healthy.

    Terminates the supervision loop. The supervisor decides what happens next.

    Attributes:
        node: Name of the node.
        reason: Reason reported by the failing probe.
    """

    def __init__(self, node: str, reason: str | None) -> None:
        self.node = node
        self.reason = reason
        super().__init__(f"{node} became unhealthy: {reason}")
