"""Health check endpoint."""

import asyncio

from fastapi import APIRouter

from proxicloud import __version__
from proxicloud.server.state import get_project_store

router = APIRouter()


@router.get("/health")
async def health():
    store = get_project_store()
    if store is None:
        return {"status": "starting", "version": __version__, "projects": 0}
    projects = await asyncio.to_thread(store.list_projects)
    return {"status": "ok", "version": __version__, "projects": len(projects)}
