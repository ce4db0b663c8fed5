"""Tests for the provisioning orchestrator."""

import pytest

from proxicloud.models.enums import NetworkState
from proxicloud.models.requests import (
    CreateProjectRequest,
    ProjectNetwork,
    UpdateProjectRequest,
)
from proxicloud.server.services import provisioning
from proxicloud.server.services.exceptions import (
    ConflictError,
    ExternalProvisioningError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from proxicloud.server.services.provisioning import ProjectProvisioner

PROJECT_ID = "abcdef0123456789abcdef0123456789"
SDN_ID = "prjabcde"
DHCP_RANGE = "start-address=10.0.1.152,end-address=10.0.1.252"
MB = 1024 * 1024


@pytest.fixture(autouse=True)
def fixed_project_id(monkeypatch):
    monkeypatch.setattr(provisioning, "generate_project_id", lambda: PROJECT_ID)


def _network_request(subnet="10.0.1.0/24", gateway="10.0.1.1", **kwargs):
    return CreateProjectRequest(
        name="web", network=ProjectNetwork(subnet=subnet, gateway=gateway), **kwargs
    )


TEARDOWN_CALLS = [
    ("delete_subnet", SDN_ID, f"{SDN_ID}-10.0.1.0-24"),
    ("delete_vnet", SDN_ID),
    ("delete_zone", SDN_ID),
    ("apply_config",),
]


class TestCreate:
    def test_without_network(self, provisioner, store, network_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        assert project.network is None
        assert network_api.calls == []
        assert store.get_project(project.id).name == "plain"
        assert provisioner.network_state(project.id) == NetworkState.NONE

    def test_network_without_subnet_is_dropped(self, provisioner, network_api):
        request = CreateProjectRequest(name="plain", network=ProjectNetwork(gateway="10.0.0.1"))
        project = provisioner.create_project(request)
        assert project.network is None
        assert network_api.calls == []

    def test_with_network(self, provisioner, store, network_api, network_request):
        project = provisioner.create_project(network_request)

        assert network_api.calls == [
            ("create_zone", SDN_ID, "simple", {}, True),
            ("create_vnet", SDN_ID, SDN_ID, 0),
            ("create_subnet", SDN_ID, "10.0.1.0/24", "10.0.1.1", True, DHCP_RANGE),
            ("apply_config",),
        ]
        assert project.id == PROJECT_ID
        assert project.network.vnet_id == SDN_ID
        assert project.network.zone == SDN_ID
        assert project.network.auto_created_zone is True
        assert project.tags == ["prod"]
        assert store.get_project(PROJECT_ID) == project
        assert provisioner.network_state(PROJECT_ID) == NetworkState.PROVISIONED

    def test_vlan_tag_and_zone_type(self, store, network_api, container_api):
        provisioner = ProjectProvisioner(
            store, network_api, container_api, zone_type="vlan", dhcp_enabled=False
        )
        request = CreateProjectRequest(
            name="tagged",
            network=ProjectNetwork(subnet="10.0.5.0/24", gateway="10.0.5.1", vlan_tag=42),
        )
        provisioner.create_project(request)

        assert network_api.calls[:3] == [
            ("create_zone", SDN_ID, "vlan", {}, False),
            ("create_vnet", SDN_ID, SDN_ID, 42),
            ("create_subnet", SDN_ID, "10.0.5.0/24", "10.0.5.1", False, ""),
        ]

    def test_state_is_provisioning_while_in_flight(self, provisioner, network_api, network_request):
        seen = []
        network_api.hooks["create_vnet"] = lambda: seen.append(
            provisioner.network_state(PROJECT_ID)
        )
        provisioner.create_project(network_request)
        assert seen == [NetworkState.PROVISIONING]

    @pytest.mark.parametrize(
        "subnet,gateway",
        [
            ("10.0.1.5/24", "10.0.1.1"),  # host bits set
            ("not-a-cidr", "10.0.1.1"),
            ("10.0.1.0/24", ""),  # gateway required
            ("10.0.1.0/24", "10.0.2.1"),  # outside subnet
            ("10.0.1.0/24", "10.0.1.255"),  # broadcast
            ("10.0.0.0/30", "10.0.0.1"),  # no DHCP room left
        ],
    )
    def test_invalid_network_makes_no_calls(
        self, provisioner, store, network_api, subnet, gateway
    ):
        with pytest.raises(ValidationError):
            provisioner.create_project(_network_request(subnet, gateway))
        assert network_api.calls == []
        assert store.list_projects() == []

    def test_entity_conflicts_make_no_calls(self, provisioner, store, network_api):
        store.create_project(CreateProjectRequest(name="web"))
        with pytest.raises(ConflictError):
            provisioner.create_project(_network_request())

        with pytest.raises(ValidationError):
            provisioner.create_project(
                CreateProjectRequest(
                    name="other",
                    network=ProjectNetwork(subnet="10.0.1.0/24", gateway="10.0.1.1"),
                    container_id_start=100,
                )
            )
        assert network_api.calls == []

    def test_zone_failure(self, provisioner, store, network_api, network_request):
        network_api.fail_on.add("create_zone")

        with pytest.raises(ExternalProvisioningError, match="failed to create SDN zone") as exc_info:
            provisioner.create_project(network_request)

        assert exc_info.value.step == "create_zone"
        assert network_api.call_names == ["create_zone"]
        assert store.list_projects() == []

    def test_vnet_failure_deletes_zone(self, provisioner, store, network_api, network_request):
        network_api.fail_on.add("create_vnet")

        with pytest.raises(ExternalProvisioningError) as exc_info:
            provisioner.create_project(network_request)

        assert exc_info.value.step == "create_vnet"
        assert network_api.calls[-1] == ("delete_zone", SDN_ID)
        assert network_api.call_names == ["create_zone", "create_vnet", "delete_zone"]
        assert store.list_projects() == []
        assert provisioner.network_state(PROJECT_ID) == NetworkState.NONE

    def test_subnet_failure_deletes_vnet_then_zone(
        self, provisioner, store, network_api, network_request
    ):
        network_api.fail_on.add("create_subnet")

        with pytest.raises(ExternalProvisioningError, match="failed to create subnet"):
            provisioner.create_project(network_request)

        assert network_api.call_names == [
            "create_zone",
            "create_vnet",
            "create_subnet",
            "delete_vnet",
            "delete_zone",
        ]
        assert store.list_projects() == []

    def test_failed_compensation_still_reports_original_error(
        self, provisioner, store, network_api, network_request
    ):
        network_api.fail_on.update({"create_subnet", "delete_vnet"})

        with pytest.raises(ExternalProvisioningError) as exc_info:
            provisioner.create_project(network_request)

        assert exc_info.value.step == "create_subnet"
        assert network_api.call_names[-2:] == ["delete_vnet", "delete_zone"]

    def test_apply_failure_is_not_fatal(self, provisioner, store, network_api, network_request):
        network_api.fail_on.add("apply_config")
        project = provisioner.create_project(network_request)
        assert project.network.vnet_id == SDN_ID
        assert store.get_project(PROJECT_ID).name == "web"

    def test_persist_conflict_tears_network_down(
        self, provisioner, store, network_api, network_request
    ):
        # Another request claims the name while the network is being built
        network_api.hooks["create_subnet"] = lambda: store.create_project(
            CreateProjectRequest(name="web")
        )

        with pytest.raises(ConflictError):
            provisioner.create_project(network_request)

        assert network_api.calls[4:] == TEARDOWN_CALLS
        assert [p.name for p in store.list_projects()] == ["web"]
        assert store.list_projects()[0].id != PROJECT_ID

    def test_persist_failure_tears_network_down(
        self, provisioner, store, network_api, network_request, monkeypatch
    ):
        def fail(*args, **kwargs):
            raise PersistenceError("failed to save projects: disk full")

        monkeypatch.setattr(store, "create_project_with_id", fail)

        with pytest.raises(PersistenceError):
            provisioner.create_project(network_request)

        assert network_api.calls[4:] == TEARDOWN_CALLS


class TestDelete:
    def test_delete_without_network(self, provisioner, store, network_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        provisioner.delete_project(project.id)

        assert network_api.calls == []
        with pytest.raises(NotFoundError):
            store.get_project(project.id)

    def test_delete_unknown(self, provisioner):
        with pytest.raises(NotFoundError):
            provisioner.delete_project("nope")

    def test_delete_tears_down_network(self, provisioner, store, network_api, network_request):
        provisioner.create_project(network_request)
        network_api.calls.clear()

        states = []
        network_api.hooks["delete_vnet"] = lambda: states.append(
            provisioner.network_state(PROJECT_ID)
        )
        provisioner.delete_project(PROJECT_ID)

        assert network_api.calls == TEARDOWN_CALLS
        assert states == [NetworkState.TEARING_DOWN]
        assert provisioner.network_state(PROJECT_ID) == NetworkState.GONE
        assert store.list_projects() == []

    def test_failed_entity_delete_is_not_gone(
        self, monkeypatch, provisioner, store, network_api, network_request
    ):
        provisioner.create_project(network_request)

        def fail_delete(project_id):
            raise PersistenceError("failed to write projects file: disk full")

        monkeypatch.setattr(store, "delete_project", fail_delete)

        with pytest.raises(PersistenceError):
            provisioner.delete_project(PROJECT_ID)

        assert store.get_project(PROJECT_ID).name == "web"
        assert provisioner.network_state(PROJECT_ID) == NetworkState.PROVISIONED
        assert provisioner._network_states == {}

    def test_gone_history_is_bounded(self, monkeypatch, store, network_api, container_api):
        ids = [f"{i:032x}" for i in range(1, 5)]
        pending = iter(ids)
        monkeypatch.setattr(provisioning, "generate_project_id", lambda: next(pending))
        provisioner = ProjectProvisioner(
            store, network_api, container_api, gone_history_size=2
        )

        for project_id in ids:
            provisioner.create_project(_network_request())
            provisioner.delete_project(project_id)

        assert provisioner._network_states == {}
        assert list(provisioner._gone) == ids[-2:]
        assert provisioner.network_state(ids[0]) == NetworkState.NONE
        assert provisioner.network_state(ids[-1]) == NetworkState.GONE

    def test_foreign_zone_is_kept(self, provisioner, store, network_api):
        network = ProjectNetwork(
            subnet="10.0.9.0/24",
            gateway="10.0.9.1",
            vnet_id="shared1",
            zone="zone1",
            auto_created_zone=False,
        )
        project = store.create_project(CreateProjectRequest(name="legacy", network=network))

        provisioner.delete_project(project.id)

        assert network_api.call_names == ["delete_subnet", "delete_vnet", "apply_config"]
        assert network_api.calls[0] == ("delete_subnet", "shared1", "zone1-10.0.9.0-24")

    def test_stale_assignments_are_cleared(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        store.assign_container(105, project.id)
        container_api.add(200)

        provisioner.delete_project(project.id)

        assert store.get_container_project(105) == ""
        assert store.list_projects() == []

    def test_live_containers_block_delete(self, provisioner, store, network_api, container_api, network_request):
        provisioner.create_project(network_request)
        network_api.calls.clear()
        store.assign_container(105, PROJECT_ID)
        store.assign_container(106, PROJECT_ID)
        container_api.add(105)

        with pytest.raises(ConflictError, match="1 container"):
            provisioner.delete_project(PROJECT_ID)

        assert network_api.calls == []
        assert store.get_project_containers(PROJECT_ID) == [105]

    def test_listing_failure_aborts(self, provisioner, store, network_api, container_api, network_request):
        provisioner.create_project(network_request)
        network_api.calls.clear()
        store.assign_container(105, PROJECT_ID)
        container_api.fail = True

        with pytest.raises(ExternalProvisioningError) as exc_info:
            provisioner.delete_project(PROJECT_ID)

        assert exc_info.value.step == "list_containers"
        assert network_api.calls == []
        assert store.get_project_containers(PROJECT_ID) == [105]
        assert store.get_project(PROJECT_ID).name == "web"

    def test_teardown_failures_are_ignored(self, provisioner, store, network_api, network_request):
        provisioner.create_project(network_request)
        network_api.calls.clear()
        network_api.fail_on.update(
            {"delete_subnet", "delete_vnet", "delete_zone", "apply_config"}
        )

        provisioner.delete_project(PROJECT_ID)

        assert network_api.calls == TEARDOWN_CALLS
        assert store.list_projects() == []


class TestPassThrough:
    def test_update_and_assign(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        container_api.add(101)
        updated = provisioner.update_project(project.id, UpdateProjectRequest(name="renamed"))
        assert updated.name == "renamed"

        provisioner.assign_container(101, project.id)
        assert store.get_container_project(101) == project.id


class TestAssignContainer:
    def test_unknown_container_is_rejected(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        container_api.add(102)

        with pytest.raises(NotFoundError, match="container not found: 101"):
            provisioner.assign_container(101, project.id)

        assert store.get_container_project(101) == ""

    def test_unknown_project_is_checked_first(self, provisioner, container_api):
        container_api.fail = True
        with pytest.raises(NotFoundError, match="project not found"):
            provisioner.assign_container(101, "nope")

    def test_listing_failure(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        container_api.fail = True

        with pytest.raises(ExternalProvisioningError) as exc_info:
            provisioner.assign_container(101, project.id)

        assert exc_info.value.step == "list_containers"
        assert store.get_container_project(101) == ""

    def test_unassign_does_not_list(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        store.assign_container(101, project.id)
        container_api.fail = True

        provisioner.assign_container(101, "")

        assert store.get_container_project(101) == ""

    def test_invalid_vmid(self, provisioner):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        with pytest.raises(ValidationError):
            provisioner.assign_container(0, project.id)


class TestAllocateContainerId:
    def test_auto_pick(self, provisioner, store):
        project = provisioner.create_project(
            CreateProjectRequest(name="ranged", container_id_start=300, container_id_end=310)
        )
        store.assign_container(300, project.id)
        assert provisioner.allocate_container_id(project.id) == 301

    def test_auto_pick_without_range(self, provisioner):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        with pytest.raises(ValidationError):
            provisioner.allocate_container_id(project.id)

    def test_requested_in_range(self, provisioner, container_api):
        project = provisioner.create_project(
            CreateProjectRequest(name="ranged", container_id_start=300, container_id_end=310)
        )
        container_api.add(301)
        assert provisioner.allocate_container_id(project.id, 305) == 305

    def test_requested_outside_range(self, provisioner):
        project = provisioner.create_project(
            CreateProjectRequest(name="ranged", container_id_start=300, container_id_end=310)
        )
        with pytest.raises(ValidationError, match="outside"):
            provisioner.allocate_container_id(project.id, 400)

    def test_requested_in_use(self, provisioner, container_api):
        project = provisioner.create_project(
            CreateProjectRequest(name="ranged", container_id_start=300, container_id_end=310)
        )
        container_api.add(305)
        with pytest.raises(ConflictError, match="already in use"):
            provisioner.allocate_container_id(project.id, 305)

    def test_unknown_project(self, provisioner):
        with pytest.raises(NotFoundError):
            provisioner.allocate_container_id("nope")


class TestOverview:
    def test_overview(self, provisioner, store, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        for vmid in (101, 102, 104):
            store.assign_container(vmid, project.id)
        container_api.add(102, status="stopped", mem=0, maxmem=2048 * MB)
        container_api.add(101, status="running", mem=512 * MB, maxmem=1024 * MB)
        container_api.add(103, status="running", mem=256 * MB, maxmem=256 * MB)

        overview = provisioner.get_project_overview(project.id)

        assert overview["project"] == project
        assert [c.vmid for c in overview["containers"]] == [101, 102]
        assert overview["aggregate"] == {
            "total_containers": 2,
            "running": 1,
            "stopped": 1,
            "total_memory_mb": 3072,
            "used_memory_mb": 512,
        }
        assert overview["network_state"] == "none"

    def test_overview_listing_failure(self, provisioner, container_api):
        project = provisioner.create_project(CreateProjectRequest(name="plain"))
        container_api.fail = True
        with pytest.raises(ExternalProvisioningError):
            provisioner.get_project_overview(project.id)
