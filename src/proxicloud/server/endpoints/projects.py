"""
Project Endpoints.

CRUD for projects plus the per-project container overview and VMID
allocation. Multi-step work (network provisioning/teardown, live container
checks) is delegated to the provisioning orchestrator.

The store and orchestrator block on locks, file writes and Proxmox calls,
so every call into them runs in a worker thread.
"""

import asyncio

from fastapi import APIRouter, HTTPException, Query

from proxicloud.models.requests import (
    CreateProjectRequest,
    Project,
    UpdateProjectRequest,
)
from proxicloud.server.services.provisioning import ProjectProvisioner
from proxicloud.server.state import get_provisioner
from proxicloud.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _require_provisioner() -> ProjectProvisioner:
    provisioner = get_provisioner()
    if provisioner is None:
        raise HTTPException(status_code=503, detail="Project service not initialized")
    return provisioner


# =============================================================================
# Project CRUD
# =============================================================================


@router.get("/projects", response_model=list[Project])
async def list_projects():
    """List all projects, oldest first."""
    provisioner = _require_provisioner()
    return await asyncio.to_thread(provisioner.store.list_projects)


@router.post("/projects", response_model=Project, status_code=201)
async def create_project(request: CreateProjectRequest):
    """
    Create a project.

    When the request carries a network subnet, a dedicated SDN zone, VNet and
    subnet are provisioned first; any failure rolls them back.
    """
    provisioner = _require_provisioner()
    logger.info(f"Creating project '{request.name.strip()}'")
    return await asyncio.to_thread(provisioner.create_project, request)


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str):
    provisioner = _require_provisioner()
    return await asyncio.to_thread(provisioner.store.get_project, project_id)


@router.put("/projects/{project_id}", response_model=Project)
async def update_project(project_id: str, request: UpdateProjectRequest):
    """Partially update a project (empty fields are left unchanged)."""
    provisioner = _require_provisioner()
    return await asyncio.to_thread(provisioner.update_project, project_id, request)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str):
    """
    Delete a project.

    Assignments of containers that no longer exist are dropped first; the
    project must not have live containers. Its network is torn down.
    """
    provisioner = _require_provisioner()
    await asyncio.to_thread(provisioner.delete_project, project_id)
    return {"status": "deleted"}


# =============================================================================
# Project Containers
# =============================================================================


@router.get("/projects/{project_id}/containers")
async def get_project_containers(project_id: str):
    """Get the project's live containers with resource totals."""
    provisioner = _require_provisioner()
    return await asyncio.to_thread(provisioner.get_project_overview, project_id)


@router.get("/projects/{project_id}/next-vmid")
async def get_next_vmid(
    project_id: str,
    vmid: int | None = Query(None, description="Requested VMID to verify"),
):
    """
    Get a VMID for a new container in the project.

    Without ``vmid`` the lowest free ID of the project's range is returned;
    with it, the requested ID is checked against the range and live
    containers.
    """
    provisioner = _require_provisioner()
    allocated = await asyncio.to_thread(
        provisioner.allocate_container_id, project_id, vmid
    )
    return {"project_id": project_id, "vmid": allocated}
