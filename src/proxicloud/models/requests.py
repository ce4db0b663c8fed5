"""
Pydantic models for API requests, responses and persisted entities.

This module defines the data transfer objects used between the HTTP
endpoints, the provisioning orchestrator, the project store and the
Proxmox client.

Model Categories:
    - Project Entities: Project and its network descriptor (also persisted)
    - Project Requests: Create/update/assign bodies
    - Proxmox Data: Container listing entries
"""

from pydantic import BaseModel, Field


# =============================================================================
# Project Entities
# =============================================================================


class ProjectNetwork(BaseModel):
    """
    Network descriptor of a project.

    subnet/gateway/nameserver/vlan_tag come from the user; vnet_id, zone
    and auto_created_zone are filled in once the SDN network is provisioned.
    """

    subnet: str = Field(default="", description="CIDR, e.g. '10.0.1.0/24'")
    gateway: str = Field(default="", description="Gateway IP, e.g. '10.0.1.1'")
    nameserver: str = Field(default="", description="DNS server, e.g. '1.1.1.1'")
    vlan_tag: int = Field(default=0, ge=0, description="VLAN tag (0 = untagged)")
    vnet_id: str = Field(default="", description="Proxmox VNet ID (set by system)")
    zone: str = Field(default="", description="Proxmox SDN zone (set by system)")
    auto_created_zone: bool = Field(
        default=False,
        description="Whether the zone was created for this project",
    )

    @property
    def is_provisioned(self) -> bool:
        return bool(self.vnet_id)


class Project(BaseModel):
    """A logical grouping of containers, optionally with its own network."""

    id: str
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    network: ProjectNetwork | None = None
    container_id_start: int | None = None
    container_id_end: int | None = None
    created_at: int
    updated_at: int

    @property
    def has_id_range(self) -> bool:
        return self.container_id_start is not None and self.container_id_end is not None


# =============================================================================
# Project Requests
# =============================================================================


class CreateProjectRequest(BaseModel):
    """Request body for project creation."""

    name: str = Field(default="", description="Unique project name")
    description: str = Field(default="", description="Free-text description")
    tags: list[str] = Field(default_factory=list, description="Project tags")
    network: ProjectNetwork | None = Field(
        default=None,
        description="Dedicated network to provision (subnet + gateway)",
    )
    container_id_start: int | None = Field(
        default=None,
        description="Start of the container ID range (>= 100)",
    )
    container_id_end: int | None = Field(
        default=None,
        description="End of the container ID range (inclusive)",
    )


class UpdateProjectRequest(BaseModel):
    """
    Request body for project updates.

    Partial update: empty strings and None leave the current value untouched.
    """

    name: str = ""
    description: str = ""
    tags: list[str] | None = None
    network: ProjectNetwork | None = None
    container_id_start: int | None = None
    container_id_end: int | None = None


class AssignProjectRequest(BaseModel):
    """Request body for assigning a container to a project."""

    project_id: str = Field(
        default="",
        description="Target project ID (empty string = no project)",
    )


# =============================================================================
# Proxmox Data
# =============================================================================


class ContainerInfo(BaseModel):
    """An LXC container entry from the Proxmox node listing."""

    vmid: int
    name: str = ""
    status: str = ""
    node: str = ""
    cpu: float = 0.0
    mem: int = 0
    maxmem: int = 0
    uptime: int = 0
    template: int | str = 0

    model_config = {"extra": "ignore"}
