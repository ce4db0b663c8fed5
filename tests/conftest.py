"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from proxicloud.models.requests import ContainerInfo, CreateProjectRequest, ProjectNetwork
from proxicloud.proxmox.exceptions import ProxmoxAPIError, ProxmoxConnectionError
from proxicloud.server.services.project_store import ProjectStore
from proxicloud.server.services.provisioning import ProjectProvisioner


class FakeNetworkAPI:
    """Records SDN calls; methods named in ``fail_on`` raise ProxmoxAPIError."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.hooks: dict = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.hooks:
            self.hooks[name]()
        if name in self.fail_on:
            raise ProxmoxAPIError(f"{name} rejected", status_code=500, detail="boom")

    @property
    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def create_zone(self, zone_id, zone_type, options=None, dhcp_enabled=True):
        self._record("create_zone", zone_id, zone_type, options, dhcp_enabled)

    def create_vnet(self, vnet_id, zone_id, vlan_tag=0):
        self._record("create_vnet", vnet_id, zone_id, vlan_tag)

    def create_subnet(self, vnet_id, cidr, gateway, dhcp_enabled=True, dhcp_range=""):
        self._record("create_subnet", vnet_id, cidr, gateway, dhcp_enabled, dhcp_range)

    def delete_subnet(self, vnet_id, subnet_id):
        self._record("delete_subnet", vnet_id, subnet_id)

    def delete_vnet(self, vnet_id):
        self._record("delete_vnet", vnet_id)

    def delete_zone(self, zone_id):
        self._record("delete_zone", zone_id)

    def apply_config(self):
        self._record("apply_config")


class FakeContainerAPI:
    """Serves a fixed container list, or fails when ``fail`` is set."""

    def __init__(self):
        self.containers: list[ContainerInfo] = []
        self.fail = False

    def add(self, vmid: int, status: str = "running", mem: int = 0, maxmem: int = 0):
        self.containers.append(
            ContainerInfo(vmid=vmid, name=f"ct{vmid}", status=status, mem=mem, maxmem=maxmem)
        )

    def list_containers(self) -> list[ContainerInfo]:
        if self.fail:
            raise ProxmoxConnectionError("list containers failed: connection refused")
        return list(self.containers)


@pytest.fixture
def projects_file(tmp_path: Path) -> Path:
    """Return a temporary project state file path."""
    return tmp_path / "data" / "projects.json"


@pytest.fixture
def store(projects_file: Path) -> ProjectStore:
    return ProjectStore(str(projects_file))


@pytest.fixture
def network_api() -> FakeNetworkAPI:
    return FakeNetworkAPI()


@pytest.fixture
def container_api() -> FakeContainerAPI:
    return FakeContainerAPI()


@pytest.fixture
def provisioner(store, network_api, container_api) -> ProjectProvisioner:
    return ProjectProvisioner(store, network_api, container_api)


@pytest.fixture
def network_request() -> CreateProjectRequest:
    """A create request with a /24 project network."""
    return CreateProjectRequest(
        name="web",
        description="Web tier",
        tags=["prod"],
        network=ProjectNetwork(subnet="10.0.1.0/24", gateway="10.0.1.1"),
    )
