"""Error types raised by the reconciliation engine and its services."""


class DockReviveError(Exception):
    """Base exception for dockrevive."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EngineConnectionError(DockReviveError):
    """The container engine could not be reached."""


class InspectError(DockReviveError):
    """A container could not be inspected (vanished or engine call failed)."""

    def __init__(self, container_id: str, message: str):
        self.container_id = container_id
        super().__init__(f"Failed to inspect {container_id[:12]}: {message}")


class ContainerNotFoundError(DockReviveError):
    """The requested container is unknown to both the engine and the store."""

    def __init__(self, container_id: str):
        self.container_id = container_id
        super().__init__(f"Container '{container_id}' not found")


class InvalidSpecError(DockReviveError):
    """Malformed image, port or mount specification."""


class WorkflowError(DockReviveError):
    """A step of a restart, create or remove workflow failed."""

    def __init__(self, container_id: str, message: str):
        self.container_id = container_id
        super().__init__(message)


class VerificationError(WorkflowError):
    """The recreated container exists but is not reported running."""
