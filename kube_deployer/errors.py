"""Exceptions raised by the Kubernetes app deployer."""

from typing import Optional


class DeployerError(Exception):
    """Base class for deployer errors."""

    pass


class ConfigurationError(DeployerError, ValueError):
    """Raised when a deployment option is malformed."""

    pass


class ClusterApiError(DeployerError):
    """Raised when a Cluster API call fails."""

    def __init__(
        self,
        operation: str,
        kind: str,
        name: Optional[str] = None,
        status: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        """
        Initialize the error.

        Args:
            operation: Operation that failed (create, read, list, delete)
            kind: Resource kind, e.g. Service or StatefulSet
            name: Resource name, when known
            status: HTTP status returned by the cluster
            reason: Reason reported by the cluster
        """
        self.operation = operation
        self.kind = kind
        self.name = name
        self.status = status
        self.reason = reason
        target = f"{kind} {name}" if name else kind
        message = f"Failed to {operation} {target}"
        if status is not None:
            message += f" (status {status}: {reason})" if reason else f" (status {status})"
        super().__init__(message)

    @property
    def is_conflict(self) -> bool:
        """Whether the cluster rejected the call because the resource exists."""
        return self.status == 409


class DeploymentNotFoundError(ClusterApiError):
    """Raised when no resources exist for a deployment id."""

    def __init__(self, deployment_id: str):
        super().__init__("undeploy", "deployment", deployment_id, status=404, reason="Not Found")
        self.deployment_id = deployment_id


class StatusUnavailableError(DeployerError):
    """Raised when the cluster cannot report status because nothing is there."""

    pass
