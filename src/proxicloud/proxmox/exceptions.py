"""Proxmox API exception classes."""


class ProxmoxError(Exception):
    """Base exception for Proxmox API operations."""

    pass


class ProxmoxConnectionError(ProxmoxError):
    """Failed to reach the Proxmox API (DNS, TLS, timeout, ...)."""

    pass


class ProxmoxAPIError(ProxmoxError):
    """Proxmox answered with a non-2xx status."""

    def __init__(
        self, message: str, status_code: int | None = None, detail: str | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
