"""Project and provisioning exception classes."""


class ProjectError(Exception):
    """Base exception for project store and provisioning operations."""

    status_code = 500


class ValidationError(ProjectError):
    """Malformed or out-of-policy input (CIDR, gateway, ID range, name)."""

    status_code = 400


class ConflictError(ProjectError):
    """Operation conflicts with committed state (duplicate name, overlap, ...)."""

    status_code = 409


class NotFoundError(ProjectError):
    """Unknown project, or no container ID left in a project's range."""

    status_code = 404


class ExternalProvisioningError(ProjectError):
    """A Proxmox call needed by a project workflow failed."""

    status_code = 502

    def __init__(self, message: str, step: str | None = None):
        self.step = step
        super().__init__(message)


class PersistenceError(ProjectError):
    """The project state file could not be read or written."""

    pass
