"""ProxiCloud: projects and per-project SDN networks on top of Proxmox VE."""

__version__ = "0.3.0"
