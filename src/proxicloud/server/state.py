"""
Shared state accessors for server modules.

Avoids circular imports between server/app.py and server/endpoints/*.
The app module sets these references during startup (tests set them
directly); endpoint modules read them via the getters.
"""

_project_store = None
_provisioner = None


def set_project_store(store):
    global _project_store
    _project_store = store


def set_provisioner(provisioner):
    global _provisioner
    _provisioner = provisioner


def get_project_store():
    """Get the project store instance (or None before startup)."""
    return _project_store


def get_provisioner():
    """Get the provisioning orchestrator instance (or None before startup)."""
    return _provisioner
