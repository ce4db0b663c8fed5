"""
Project Store.

Keeps every project and the VMID -> project assignments in memory and
persists them to a single JSON file.

State Management:
- One ReadWriteLock guards both maps and the file write
- Reads hold the lock shared, mutations hold it exclusively for their
  whole duration (validation, file write, commit)
- Mutations never touch the live maps before the file write succeeds:
  the new state is built as copies, written to disk, then swapped in.
  A failed write leaves memory exactly as it was.

File Format:
    {
      "projects": {"<id>": {...Project...}},
      "vmid_map": {"<vmid>": "<project_id>"}
    }

The file is replaced atomically (temp file in the same directory + fsync +
os.replace), so readers never observe a half-written file.
"""

from __future__ import annotations

import json
import os
import secrets
import tempfile
import time

from pydantic import ValidationError as PydanticValidationError

from proxicloud.models.requests import (
    CreateProjectRequest,
    Project,
    ProjectNetwork,
    UpdateProjectRequest,
)
from proxicloud.server.services.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from proxicloud.utils.logger import get_logger
from proxicloud.utils.rwlock import ReadWriteLock

logger = get_logger(__name__)

DEFAULT_PROJECTS_FILE = "/var/lib/proxicloud/projects.json"

# Proxmox reserves VMIDs below 100
MIN_CONTAINER_ID = 100


def generate_project_id() -> str:
    """Generate a random 16-byte hex project ID."""
    return secrets.token_hex(16)


class ProjectStore:
    """
    Concurrency-safe, file-backed store of projects and container assignments.

    Construct once at startup and share the instance; it owns its maps and
    its lock.
    """

    def __init__(self, file_path: str = DEFAULT_PROJECTS_FILE):
        """
        Initialize the store and load existing state.

        Args:
            file_path: Path of the JSON state file. A missing file is an
                empty store; its directory is created if needed.

        Raises:
            PersistenceError: If the directory cannot be created or the
                existing file cannot be parsed.
        """
        self.file_path = file_path
        self._lock = ReadWriteLock()

        # In-memory state, replaced wholesale on every committed mutation
        self._projects: dict[str, Project] = {}
        self._vmid_map: dict[int, str] = {}

        directory = os.path.dirname(os.path.abspath(file_path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"failed to create directory '{directory}': {e}"
            ) from e

        self._load()

        logger.info(
            f"Project store loaded from {file_path}: "
            f"{len(self._projects)} projects, {len(self._vmid_map)} assignments"
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load(self) -> None:
        """Read the state file into memory (no file = empty store)."""
        if not os.path.exists(self.file_path):
            return

        try:
            with open(self.file_path, encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"failed to load projects: {e}") from e

        try:
            projects = {
                pid: Project.model_validate(data)
                for pid, data in (stored.get("projects") or {}).items()
            }
            vmid_map = {
                int(vmid): pid for vmid, pid in (stored.get("vmid_map") or {}).items()
            }
        except (AttributeError, ValueError, PydanticValidationError) as e:
            raise PersistenceError(f"failed to parse projects: {e}") from e

        self._projects = projects
        self._vmid_map = vmid_map

    def _save(self, projects: dict[str, Project], vmid_map: dict[int, str]) -> None:
        """
        Atomically write a (staged) state to disk.

        Raises:
            PersistenceError: If the write or rename fails.
        """
        stored = {
            "projects": {pid: p.model_dump(mode="json") for pid, p in projects.items()},
            "vmid_map": {str(vmid): pid for vmid, pid in sorted(vmid_map.items())},
        }

        directory = os.path.dirname(os.path.abspath(self.file_path))
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=".projects-",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = tmp.name
                json.dump(stored, tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.warning(f"Failed to remove temp file {tmp_path}")
            raise PersistenceError(f"failed to save projects: {e}") from e

    # =========================================================================
    # Validation Helpers (caller holds the lock)
    # =========================================================================

    def _find_by_name(self, name: str, exclude_id: str | None = None) -> Project | None:
        for pid, project in self._projects.items():
            if pid != exclude_id and project.name == name:
                return project
        return None

    def _check_range(self, exclude_id: str, start: int, end: int) -> None:
        if start <= 0:
            raise ValidationError("container_id_start must be greater than 0")
        if end <= 0:
            raise ValidationError("container_id_end must be greater than 0")
        if start > end:
            raise ValidationError(
                f"container_id_start ({start}) must be less than or equal to "
                f"container_id_end ({end})"
            )
        if start < MIN_CONTAINER_ID:
            raise ValidationError(
                f"container_id_start must be >= {MIN_CONTAINER_ID} "
                f"(Proxmox reserves IDs below {MIN_CONTAINER_ID})"
            )

        for pid, project in self._projects.items():
            if pid == exclude_id or not project.has_id_range:
                continue

            existing_start = project.container_id_start
            existing_end = project.container_id_end
            if (
                existing_start <= start <= existing_end
                or existing_start <= end <= existing_end
                or (start <= existing_start and end >= existing_end)
            ):
                raise ConflictError(
                    f"container ID range {start}-{end} overlaps with project "
                    f"'{project.name}' range {existing_start}-{existing_end}"
                )

    def _check_new_project(self, project_id: str, request: CreateProjectRequest) -> None:
        name = request.name.strip()
        if not name:
            raise ValidationError("project name is required")
        if project_id in self._projects:
            raise ConflictError(f"project with ID '{project_id}' already exists")
        if self._find_by_name(name):
            raise ConflictError(f"project with name '{name}' already exists")

        start, end = request.container_id_start, request.container_id_end
        if (start is None) != (end is None):
            raise ValidationError(
                "both container_id_start and container_id_end must be provided together"
            )
        if start is not None:
            self._check_range(project_id, start, end)

    @staticmethod
    def _merge_network(
        current: ProjectNetwork | None, requested: ProjectNetwork
    ) -> ProjectNetwork | None:
        """
        Apply a network update. Only the nameserver may change; subnet,
        gateway and VLAN tag are fixed once the project exists, and the
        provisioned identifiers are never taken from the request.
        """
        if current is None:
            if (
                requested.subnet
                or requested.gateway
                or requested.vlan_tag
                or requested.nameserver
            ):
                raise ValidationError(
                    "a project network can only be provisioned when the project is created"
                )
            return None

        for field in ("subnet", "gateway", "vlan_tag"):
            new_value = getattr(requested, field)
            if new_value and new_value != getattr(current, field):
                raise ValidationError(
                    f"network {field} cannot be changed after the project is created"
                )

        if requested.nameserver:
            return current.model_copy(update={"nameserver": requested.nameserver})
        return current

    # =========================================================================
    # Project Operations
    # =========================================================================

    def check_create(self, project_id: str, request: CreateProjectRequest) -> None:
        """
        Validate a create request without storing anything.

        Used by the orchestrator to reject a request before any external
        call. The same checks run again (atomically) when the project is
        actually created.
        """
        with self._lock.read_locked():
            self._check_new_project(project_id, request)

    def create_project(self, request: CreateProjectRequest) -> Project:
        """Create a project with a freshly generated ID."""
        return self.create_project_with_id(generate_project_id(), request)

    def create_project_with_id(
        self, project_id: str, request: CreateProjectRequest
    ) -> Project:
        """
        Create and persist a project with a caller-chosen ID.

        Raises:
            ValidationError: Missing name or invalid/half-specified ID range.
            ConflictError: Duplicate name or ID, overlapping ID range.
            PersistenceError: The state file could not be written.
        """
        with self._lock.write_locked():
            self._check_new_project(project_id, request)

            now = int(time.time())
            project = Project(
                id=project_id,
                name=request.name.strip(),
                description=request.description,
                tags=list(request.tags),
                network=(
                    request.network.model_copy() if request.network is not None else None
                ),
                container_id_start=request.container_id_start,
                container_id_end=request.container_id_end,
                created_at=now,
                updated_at=now,
            )

            projects = dict(self._projects)
            projects[project_id] = project
            self._save(projects, self._vmid_map)
            self._projects = projects

        logger.info(f"Created project '{project.name}' ({project_id})")
        return project.model_copy(deep=True)

    def get_project(self, project_id: str) -> Project:
        """Get a project by ID (NotFoundError if absent)."""
        with self._lock.read_locked():
            project = self._projects.get(project_id)
            if project is None:
                raise NotFoundError(f"project not found: {project_id}")
            return project.model_copy(deep=True)

    def list_projects(self) -> list[Project]:
        """Get all projects, oldest first."""
        with self._lock.read_locked():
            projects = sorted(
                self._projects.values(), key=lambda p: (p.created_at, p.name)
            )
            return [p.model_copy(deep=True) for p in projects]

    def update_project(self, project_id: str, request: UpdateProjectRequest) -> Project:
        """
        Partially update a project's metadata.

        Empty strings and None in the request leave fields untouched.
        The ID and provisioned network identifiers never change.

        Raises:
            NotFoundError: Unknown project.
            ConflictError: New name taken by another project, or the new
                ID range overlaps another project's range.
            ValidationError: Blank name, invalid ID range or disallowed
                network change.
            PersistenceError: The state file could not be written.
        """
        with self._lock.write_locked():
            current = self._projects.get(project_id)
            if current is None:
                raise NotFoundError(f"project not found: {project_id}")

            changes = {}

            name = request.name.strip()
            if request.name and not name:
                raise ValidationError("project name cannot be blank")
            if name and name != current.name:
                if self._find_by_name(name, exclude_id=project_id):
                    raise ConflictError(f"project with name '{name}' already exists")
                changes["name"] = name

            if request.description:
                changes["description"] = request.description

            if request.tags is not None:
                changes["tags"] = list(request.tags)

            if request.network is not None:
                changes["network"] = self._merge_network(
                    current.network, request.network
                )

            if (
                request.container_id_start is not None
                or request.container_id_end is not None
            ):
                start = (
                    request.container_id_start
                    if request.container_id_start is not None
                    else current.container_id_start
                )
                end = (
                    request.container_id_end
                    if request.container_id_end is not None
                    else current.container_id_end
                )
                if start is None or end is None:
                    raise ValidationError(
                        "both container_id_start and container_id_end must be "
                        "provided together"
                    )
                self._check_range(project_id, start, end)
                changes["container_id_start"] = start
                changes["container_id_end"] = end

            changes["updated_at"] = int(time.time())
            updated = current.model_copy(update=changes, deep=True)

            projects = dict(self._projects)
            projects[project_id] = updated
            self._save(projects, self._vmid_map)
            self._projects = projects

        logger.info(f"Updated project '{updated.name}' ({project_id})")
        return updated.model_copy(deep=True)

    def delete_project(self, project_id: str) -> None:
        """
        Delete a project that has no container assigned.

        Raises:
            NotFoundError: Unknown project.
            ConflictError: Containers are still assigned to it.
            PersistenceError: The state file could not be written.
        """
        with self._lock.write_locked():
            project = self._projects.get(project_id)
            if project is None:
                raise NotFoundError(f"project not found: {project_id}")

            assigned = [v for v, pid in self._vmid_map.items() if pid == project_id]
            if assigned:
                raise ConflictError(
                    f"cannot delete project: {len(assigned)} container(s) still assigned"
                )

            projects = dict(self._projects)
            del projects[project_id]
            self._save(projects, self._vmid_map)
            self._projects = projects

        logger.info(f"Deleted project '{project.name}' ({project_id})")

    # =========================================================================
    # Container Assignment
    # =========================================================================

    def assign_container(self, vmid: int, project_id: str) -> None:
        """
        Assign a container to a project, or unassign it.

        Args:
            vmid: Container VMID (positive).
            project_id: Target project, or "" to remove the assignment.

        Raises:
            ValidationError: Non-positive VMID.
            NotFoundError: project_id is set but unknown.
            PersistenceError: The state file could not be written.
        """
        if vmid <= 0:
            raise ValidationError(f"invalid vmid: {vmid}")

        with self._lock.write_locked():
            if project_id and project_id not in self._projects:
                raise NotFoundError(f"project not found: {project_id}")

            if not project_id and vmid not in self._vmid_map:
                return

            vmid_map = dict(self._vmid_map)
            if project_id:
                vmid_map[vmid] = project_id
            else:
                del vmid_map[vmid]
            self._save(self._projects, vmid_map)
            self._vmid_map = vmid_map

        if project_id:
            logger.info(f"Assigned container {vmid} to project {project_id}")
        else:
            logger.info(f"Removed container {vmid} from its project")

    def get_container_project(self, vmid: int) -> str:
        """Get the project ID of a container ("" if unassigned)."""
        with self._lock.read_locked():
            return self._vmid_map.get(vmid, "")

    def get_project_containers(self, project_id: str) -> list[int]:
        """Get the VMIDs assigned to a project, ascending."""
        with self._lock.read_locked():
            return sorted(v for v, pid in self._vmid_map.items() if pid == project_id)

    def clear_stale_assignments(self, project_id: str, live_vmids: set[int]) -> list[int]:
        """
        Drop a project's assignments whose container no longer exists.

        Args:
            project_id: Project to reconcile.
            live_vmids: VMIDs of the containers that currently exist.

        Returns:
            The VMIDs whose assignment was removed.
        """
        with self._lock.write_locked():
            stale = sorted(
                vmid
                for vmid, pid in self._vmid_map.items()
                if pid == project_id and vmid not in live_vmids
            )
            if not stale:
                return []

            vmid_map = {
                vmid: pid for vmid, pid in self._vmid_map.items() if vmid not in stale
            }
            self._save(self._projects, vmid_map)
            self._vmid_map = vmid_map

        logger.info(f"Cleared stale assignments for project {project_id}: {stale}")
        return stale

    # =========================================================================
    # Container ID Ranges
    # =========================================================================

    def validate_container_id_range(
        self, exclude_project_id: str, start: int, end: int
    ) -> None:
        """
        Validate a container ID range against bounds and other projects.

        Args:
            exclude_project_id: Project whose own range is ignored (the one
                being updated), or "" for none.
            start: First VMID of the range.
            end: Last VMID of the range (inclusive).

        Raises:
            ValidationError: Non-positive bounds, start > end, or start < 100.
            ConflictError: The range overlaps another project's range.
        """
        with self._lock.read_locked():
            self._check_range(exclude_project_id, start, end)

    def get_next_container_id_in_range(self, project_id: str) -> int:
        """
        Get the lowest VMID in a project's range not yet assigned to it.

        Raises:
            NotFoundError: Unknown project, or every ID in the range is used.
            ValidationError: The project has no container ID range.
        """
        with self._lock.read_locked():
            project = self._projects.get(project_id)
            if project is None:
                raise NotFoundError(f"project not found: {project_id}")
            if not project.has_id_range:
                raise ValidationError(
                    f"project '{project.name}' does not have a container ID range configured"
                )

            used = {v for v, pid in self._vmid_map.items() if pid == project_id}
            for vmid in range(project.container_id_start, project.container_id_end + 1):
                if vmid not in used:
                    return vmid

            raise NotFoundError(
                f"no available container IDs in range {project.container_id_start}-"
                f"{project.container_id_end} for project '{project.name}'"
            )
