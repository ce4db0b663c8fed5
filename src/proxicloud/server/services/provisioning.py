"""
Project Provisioning Orchestrator.

Coordinates the project store with the Proxmox SDN and container APIs:

Create (with a subnet):
    validate subnet/gateway/DHCP range + entity checks   (no external call)
    -> create zone -> create VNet -> compute DHCP range -> create subnet
    -> apply SDN config (warning only on failure)
    -> persist project with vnet_id/zone/auto_created_zone

    The four network steps run as a saga: a failing step undoes the
    completed ones in reverse order. If persisting fails afterwards the new
    network is torn down again and the store error is re-raised.

Delete:
    list live containers (abort if that fails) -> drop stale assignments
    -> refuse if live containers remain -> tear down network (best-effort)
    -> delete project

Network state per project:
    none -> provisioning -> provisioned
    none -> provisioning -> rolled_back   (reported as none afterwards)
    provisioned -> tearing_down -> gone   (once the project entity is deleted)
    provisioned -> tearing_down -> provisioned   (entity delete failed)
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Protocol

from proxicloud.models.enums import ContainerStatus, NetworkState
from proxicloud.models.requests import (
    ContainerInfo,
    CreateProjectRequest,
    Project,
    ProjectNetwork,
    UpdateProjectRequest,
)
from proxicloud.models.sdn_network import (
    calculate_dhcp_range,
    generate_sdn_identifier,
    is_valid_cidr,
    sdn_subnet_id,
    validate_gateway_in_subnet,
)
from proxicloud.server.services.exceptions import (
    ConflictError,
    ExternalProvisioningError,
    NotFoundError,
    ProjectError,
    ValidationError,
)
from proxicloud.server.services.project_store import ProjectStore, generate_project_id
from proxicloud.server.services.saga import SagaError, SagaStep, run_saga
from proxicloud.utils.logger import get_logger

logger = get_logger(__name__)

STEP_MESSAGES = {
    "create_zone": "failed to create SDN zone",
    "create_vnet": "failed to create VNet",
    "create_subnet": "failed to create subnet",
}


# =============================================================================
# Collaborators
# =============================================================================


class NetworkResourceAPI(Protocol):
    """Proxmox SDN operations used by the orchestrator."""

    def create_zone(
        self,
        zone_id: str,
        zone_type: str,
        options: dict[str, Any] | None = None,
        dhcp_enabled: bool = True,
    ) -> None: ...

    def create_vnet(self, vnet_id: str, zone_id: str, vlan_tag: int = 0) -> None: ...

    def create_subnet(
        self,
        vnet_id: str,
        cidr: str,
        gateway: str,
        dhcp_enabled: bool = True,
        dhcp_range: str = "",
    ) -> None: ...

    def delete_subnet(self, vnet_id: str, subnet_id: str) -> None: ...

    def delete_vnet(self, vnet_id: str) -> None: ...

    def delete_zone(self, zone_id: str) -> None: ...

    def apply_config(self) -> None: ...


class ContainerListingAPI(Protocol):
    """Live container listing of the Proxmox node."""

    def list_containers(self) -> list[ContainerInfo]: ...


# =============================================================================
# Orchestrator
# =============================================================================


class ProjectProvisioner:
    """
    Runs project workflows that touch both the store and Proxmox.

    External calls are made strictly one after another; the store lock is
    never held across them.
    """

    def __init__(
        self,
        store: ProjectStore,
        network_api: NetworkResourceAPI,
        container_api: ContainerListingAPI,
        zone_type: str = "simple",
        dhcp_enabled: bool = True,
        gone_history_size: int = 1024,
    ):
        self.store = store
        self.network_api = network_api
        self.container_api = container_api
        self.zone_type = zone_type
        self.dhcp_enabled = dhcp_enabled

        # In-flight network states, keyed by project ID
        self._network_states: dict[str, NetworkState] = {}
        # Recently deleted projects, oldest first
        self._gone: OrderedDict[str, None] = OrderedDict()
        self._gone_history_size = gone_history_size
        self._state_lock = threading.Lock()

    # =========================================================================
    # Network State
    # =========================================================================

    def _set_state(self, project_id: str, state: NetworkState) -> None:
        with self._state_lock:
            self._gone.pop(project_id, None)
            self._network_states[project_id] = state
        logger.debug(f"Project {project_id} network state: {state.value}")

    def _clear_state(self, project_id: str) -> None:
        with self._state_lock:
            self._network_states.pop(project_id, None)

    def _mark_gone(self, project_id: str) -> None:
        with self._state_lock:
            self._network_states.pop(project_id, None)
            self._gone[project_id] = None
            self._gone.move_to_end(project_id)
            while len(self._gone) > self._gone_history_size:
                self._gone.popitem(last=False)
        logger.debug(f"Project {project_id} network state: {NetworkState.GONE.value}")

    def network_state(self, project_id: str) -> NetworkState:
        """
        Get the network lifecycle state of a project.

        In-flight states (provisioning, tearing_down) are tracked here, and
        "gone" for the most recently deleted projects. Otherwise the state
        follows from the stored project.
        """
        with self._state_lock:
            state = self._network_states.get(project_id)
            if state is None and project_id in self._gone:
                state = NetworkState.GONE
        if state is not None:
            return state

        try:
            project = self.store.get_project(project_id)
        except NotFoundError:
            return NetworkState.NONE

        if project.network is not None and project.network.is_provisioned:
            return NetworkState.PROVISIONED
        return NetworkState.NONE

    # =========================================================================
    # Create
    # =========================================================================

    def _dhcp_range_for(self, network: ProjectNetwork) -> str:
        if not self.dhcp_enabled:
            return ""
        try:
            return calculate_dhcp_range(network.subnet, network.gateway)
        except ValueError as e:
            raise ValidationError(f"failed to calculate DHCP range: {e}") from e

    def _validate_network(self, network: ProjectNetwork) -> None:
        if not is_valid_cidr(network.subnet):
            raise ValidationError(f"invalid subnet CIDR: {network.subnet}")
        if not network.gateway:
            raise ValidationError("gateway is required when subnet is specified")
        try:
            validate_gateway_in_subnet(network.subnet, network.gateway)
        except ValueError as e:
            raise ValidationError(f"invalid gateway: {e}") from e
        self._dhcp_range_for(network)

    def create_project(self, request: CreateProjectRequest) -> Project:
        """
        Create a project, provisioning its SDN network when a subnet is given.

        Raises:
            ValidationError: Bad subnet, gateway, DHCP range, name or ID range.
            ConflictError: Duplicate name or overlapping ID range.
            ExternalProvisioningError: A network step failed (already rolled back).
            PersistenceError: The project could not be saved (network torn down).
        """
        request = request.model_copy(update={"name": request.name.strip()})
        network = request.network
        if network is None or not network.subnet:
            return self.store.create_project(request.model_copy(update={"network": None}))

        # Everything that can be rejected is rejected before the first call
        self._validate_network(network)
        project_id = generate_project_id()
        self.store.check_create(project_id, request)

        sdn_id = generate_sdn_identifier(project_id, request.name)
        zone_id = sdn_id
        vnet_id = sdn_id

        logger.info(
            f"Provisioning network for project '{request.name}': "
            f"zone={zone_id}, vnet={vnet_id}, subnet={network.subnet}"
        )
        self._set_state(project_id, NetworkState.PROVISIONING)

        staged: dict[str, str] = {}

        def compute_dhcp_range() -> str:
            staged["dhcp_range"] = self._dhcp_range_for(network)
            return staged["dhcp_range"]

        steps = [
            SagaStep(
                "create_zone",
                lambda: self.network_api.create_zone(
                    zone_id, self.zone_type, {}, self.dhcp_enabled
                ),
                lambda: self.network_api.delete_zone(zone_id),
            ),
            SagaStep(
                "create_vnet",
                lambda: self.network_api.create_vnet(vnet_id, zone_id, network.vlan_tag),
                lambda: self.network_api.delete_vnet(vnet_id),
            ),
            SagaStep("compute_dhcp_range", compute_dhcp_range),
            SagaStep(
                "create_subnet",
                lambda: self.network_api.create_subnet(
                    vnet_id,
                    network.subnet,
                    network.gateway,
                    self.dhcp_enabled,
                    staged["dhcp_range"],
                ),
            ),
        ]

        try:
            run_saga(steps)
        except SagaError as e:
            self._set_state(project_id, NetworkState.ROLLED_BACK)
            logger.warning(
                f"Network provisioning for project '{request.name}' rolled back "
                f"at step '{e.step}'"
            )
            self._clear_state(project_id)
            if isinstance(e.cause, ProjectError):
                raise e.cause from None
            message = STEP_MESSAGES.get(e.step, f"step '{e.step}' failed")
            raise ExternalProvisioningError(f"{message}: {e.cause}", step=e.step) from e

        try:
            self.network_api.apply_config()
        except Exception as e:
            logger.warning(f"Failed to apply SDN configuration: {e}")

        provisioned = network.model_copy(
            update={"vnet_id": vnet_id, "zone": zone_id, "auto_created_zone": True}
        )
        try:
            project = self.store.create_project_with_id(
                project_id, request.model_copy(update={"network": provisioned})
            )
        except ProjectError as e:
            logger.error(
                f"Failed to store project '{request.name}' after provisioning: {e}"
            )
            self._teardown_network(provisioned)
            self._clear_state(project_id)
            raise

        self._clear_state(project_id)
        logger.info(f"Project '{project.name}' created with VNet {vnet_id}")
        return project

    # =========================================================================
    # Delete
    # =========================================================================

    def _live_vmids(self) -> set[int]:
        try:
            containers = self.container_api.list_containers()
        except Exception as e:
            raise ExternalProvisioningError(
                f"failed to list containers: {e}", step="list_containers"
            ) from e
        return {c.vmid for c in containers}

    def _teardown_network(self, network: ProjectNetwork) -> None:
        """Delete subnet, VNet and (own) zone, then apply. Never raises."""
        vnet_id = network.vnet_id

        if network.subnet:
            try:
                self.network_api.delete_subnet(
                    vnet_id, sdn_subnet_id(network.zone, network.subnet)
                )
            except Exception as e:
                logger.warning(f"Failed to delete subnet of VNet {vnet_id}: {e}")

        try:
            self.network_api.delete_vnet(vnet_id)
        except Exception as e:
            logger.warning(f"Failed to delete VNet {vnet_id}: {e}")

        if network.auto_created_zone and network.zone:
            try:
                self.network_api.delete_zone(network.zone)
            except Exception as e:
                logger.warning(f"Failed to delete zone {network.zone}: {e}")

        try:
            self.network_api.apply_config()
        except Exception as e:
            logger.warning(f"Failed to apply SDN configuration after cleanup: {e}")

    def delete_project(self, project_id: str) -> None:
        """
        Delete a project and tear down its network.

        Raises:
            NotFoundError: Unknown project.
            ExternalProvisioningError: Live containers could not be listed.
            ConflictError: Live containers are still assigned.
            PersistenceError: The store could not be saved.
        """
        project = self.store.get_project(project_id)

        live = self._live_vmids()
        stale = self.store.clear_stale_assignments(project_id, live)
        if stale:
            logger.info(
                f"Removed {len(stale)} stale container assignment(s) "
                f"from project '{project.name}'"
            )

        remaining = self.store.get_project_containers(project_id)
        if remaining:
            raise ConflictError(
                f"cannot delete project: {len(remaining)} container(s) still assigned"
            )

        had_network = project.network is not None and project.network.is_provisioned
        if had_network:
            logger.info(
                f"Tearing down network of project '{project.name}': "
                f"vnet={project.network.vnet_id}, zone={project.network.zone}"
            )
            self._set_state(project_id, NetworkState.TEARING_DOWN)
            self._teardown_network(project.network)

        try:
            self.store.delete_project(project_id)
        except ProjectError:
            self._clear_state(project_id)
            raise

        if had_network:
            self._mark_gone(project_id)

    # =========================================================================
    # Pass-through & Container Operations
    # =========================================================================

    def update_project(self, project_id: str, request: UpdateProjectRequest) -> Project:
        return self.store.update_project(project_id, request)

    def assign_container(self, vmid: int, project_id: str) -> None:
        """
        Assign a live container to a project ("" unassigns).

        Unassigning skips the live check so stale entries can be removed.

        Raises:
            ValidationError: Non-positive VMID.
            NotFoundError: Unknown project, or no such container on the node.
            ExternalProvisioningError: Live containers could not be listed.
        """
        if project_id:
            if vmid <= 0:
                raise ValidationError(f"invalid vmid: {vmid}")
            self.store.get_project(project_id)
            if vmid not in self._live_vmids():
                raise NotFoundError(f"container not found: {vmid}")
        self.store.assign_container(vmid, project_id)

    def allocate_container_id(
        self, project_id: str, requested_vmid: int | None = None
    ) -> int:
        """
        Pick the VMID for a new container in a project.

        Args:
            project_id: Project the container will belong to.
            requested_vmid: VMID chosen by the user, or None to take the
                lowest free ID of the project's range.

        Raises:
            NotFoundError: Unknown project or exhausted range.
            ValidationError: No range configured (auto pick), or the
                requested VMID is invalid or outside the range.
            ConflictError: The requested VMID is already in use.
            ExternalProvisioningError: Live containers could not be listed.
        """
        project = self.store.get_project(project_id)

        if requested_vmid is None:
            return self.store.get_next_container_id_in_range(project_id)

        if requested_vmid <= 0:
            raise ValidationError(f"invalid vmid: {requested_vmid}")

        if project.has_id_range and not (
            project.container_id_start <= requested_vmid <= project.container_id_end
        ):
            raise ValidationError(
                f"VMID {requested_vmid} is outside project's container ID range "
                f"{project.container_id_start}-{project.container_id_end}"
            )

        if requested_vmid in self._live_vmids():
            raise ConflictError(f"VMID {requested_vmid} is already in use")

        return requested_vmid

    def get_project_overview(self, project_id: str) -> dict[str, Any]:
        """
        Get a project with its live containers and resource totals.

        Assigned VMIDs without a live container are left out (they are
        cleaned up on delete).
        """
        project = self.store.get_project(project_id)
        assigned = set(self.store.get_project_containers(project_id))

        try:
            containers = self.container_api.list_containers()
        except Exception as e:
            raise ExternalProvisioningError(
                f"failed to list containers: {e}", step="list_containers"
            ) from e

        members = sorted(
            (c for c in containers if c.vmid in assigned), key=lambda c: c.vmid
        )

        running = sum(1 for c in members if c.status == ContainerStatus.RUNNING.value)
        stopped = sum(1 for c in members if c.status == ContainerStatus.STOPPED.value)
        mb = 1024 * 1024

        return {
            "project": project,
            "containers": members,
            "aggregate": {
                "total_containers": len(members),
                "running": running,
                "stopped": stopped,
                "total_memory_mb": sum(c.maxmem for c in members) // mb,
                "used_memory_mb": sum(c.mem for c in members) // mb,
            },
            "network_state": self.network_state(project_id).value,
        }
