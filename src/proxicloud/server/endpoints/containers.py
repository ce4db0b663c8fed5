"""
Container Assignment Endpoints.

Reads and changes which project a container belongs to.
"""

import asyncio

from fastapi import APIRouter, HTTPException

from proxicloud.models.requests import AssignProjectRequest
from proxicloud.server.services.provisioning import ProjectProvisioner
from proxicloud.server.state import get_provisioner

router = APIRouter()


def _require_provisioner() -> ProjectProvisioner:
    provisioner = get_provisioner()
    if provisioner is None:
        raise HTTPException(status_code=503, detail="Project service not initialized")
    return provisioner


@router.get("/containers/{vmid}/project")
async def get_container_project(vmid: int):
    """Get the project of a container ("" if unassigned)."""
    provisioner = _require_provisioner()
    project_id = await asyncio.to_thread(provisioner.store.get_container_project, vmid)
    return {"vmid": vmid, "project_id": project_id}


@router.put("/containers/{vmid}/project")
async def assign_container_project(vmid: int, request: AssignProjectRequest):
    """
    Assign a container to a project; an empty project_id unassigns it.

    The container must exist on the node (404 otherwise).
    """
    provisioner = _require_provisioner()
    await asyncio.to_thread(provisioner.assign_container, vmid, request.project_id)
    return {"vmid": vmid, "project_id": request.project_id}
