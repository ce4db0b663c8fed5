"""
ProxiCloud API FastAPI Application.

This module provides the main entry point for the API server.

Responsibilities:
    - Project CRUD and container assignment
    - Per-project SDN network provisioning and teardown
    - Container ID range allocation
"""

import contextlib
import os
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from proxicloud import __version__
from proxicloud.models.enums import LogLevel
from proxicloud.proxmox import ProxmoxClient
from proxicloud.server.config import ConfigError, config, load_config
from proxicloud.server.endpoints import containers, health, network, projects
from proxicloud.server.services.exceptions import ProjectError
from proxicloud.server.services.project_store import ProjectStore
from proxicloud.server.services.provisioning import ProjectProvisioner
from proxicloud.server.state import set_project_store, set_provisioner
from proxicloud.utils.logger import configure_logging, format_traceback, get_logger

logger = get_logger(__name__)


# =============================================================================
# Lifecycle Events
# =============================================================================


async def startup_event(app: FastAPI):
    """Open the project store and Proxmox client on server startup."""
    logger.info("API server starting up")
    logger.debug(f"Projects file: {config.PROJECTS_FILE}")

    store = ProjectStore(config.PROJECTS_FILE)
    client = ProxmoxClient(
        host=config.PROXMOX_HOST,
        node=config.PROXMOX_NODE,
        token_id=config.PROXMOX_TOKEN_ID,
        token_secret=config.PROXMOX_TOKEN_SECRET,
        insecure=config.PROXMOX_INSECURE,
        timeout=config.PROXMOX_TIMEOUT_SECONDS,
    )
    if config.PROXMOX_INSECURE:
        logger.warning("TLS verification for the Proxmox API is disabled")

    provisioner = ProjectProvisioner(
        store,
        network_api=client,
        container_api=client,
        zone_type=config.SDN_ZONE_TYPE,
        dhcp_enabled=config.SDN_DHCP_ENABLED,
    )

    # Store in app.state for shutdown
    app.state.proxmox_client = client
    set_project_store(store)
    set_provisioner(provisioner)

    logger.info(
        f"Connected to Proxmox at {client.base_url} (node {config.PROXMOX_NODE})"
    )


async def shutdown_event(app: FastAPI):
    """Clean up resources on server shutdown."""
    logger.info("API server shutting down")

    client = getattr(app.state, "proxmox_client", None)
    if client is not None:
        client.close()

    set_provisioner(None)
    set_project_store(None)

    logger.info("API server shut down complete")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_event(app)
    try:
        yield
    finally:
        await shutdown_event(app)


# =============================================================================
# Application Setup
# =============================================================================

# FastAPI application instance
app = FastAPI(
    title="ProxiCloud API",
    description="Project and network provisioning for Proxmox VE",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers (all under /api prefix)
app.include_router(projects.router, prefix="/api", tags=["Projects"])
app.include_router(containers.router, prefix="/api", tags=["Containers"])
app.include_router(network.router, prefix="/api", tags=["Network"])
app.include_router(health.router, prefix="/api", tags=["Health"])


# =============================================================================
# Error Handling
# =============================================================================


@app.exception_handler(ProjectError)
async def project_error_handler(request: Request, exc: ProjectError):
    """Map project/provisioning errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        logger.debug(format_traceback(exc))
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# =============================================================================
# Server Entry Points
# =============================================================================


def run():
    """Run the API server using uvicorn."""
    import uvicorn

    # Configure logging before starting uvicorn
    configure_logging(config.LOG_LEVEL, config.LOG_FILE)

    # Map log levels to uvicorn levels
    uvicorn_level_map = {
        LogLevel.FULL: "debug",
        LogLevel.DEBUG: "debug",
        LogLevel.INFO: "info",
        LogLevel.WARNING: "warning",
    }
    uvicorn_level = uvicorn_level_map.get(config.LOG_LEVEL, "info")

    logger.info(f"Starting API server on {config.get_bind_address()}")

    uvicorn.run(
        app,
        host=config.BIND_IP,
        port=config.PORT,
        log_level=uvicorn_level,
        log_config=None,  # Disable uvicorn's default logging config (use loguru)
    )


def main():
    """
    Entry point for the API server.

    Reads the YAML file named by PROXICLOUD_CONFIG (if set) plus the
    environment, and refuses to start on an incomplete configuration.
    """
    try:
        load_config(os.environ.get("PROXICLOUD_CONFIG"), target=config)
        config.validate()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    run()


if __name__ == "__main__":
    main()
