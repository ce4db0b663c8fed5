"""
Proxmox VE API client package.

Re-exports the client and its exceptions:
    from proxicloud.proxmox import ProxmoxClient, ProxmoxError
"""

from proxicloud.proxmox.client import ProxmoxClient
from proxicloud.proxmox.exceptions import (
    ProxmoxAPIError,
    ProxmoxConnectionError,
    ProxmoxError,
)

__all__ = ["ProxmoxClient", "ProxmoxError", "ProxmoxAPIError", "ProxmoxConnectionError"]
