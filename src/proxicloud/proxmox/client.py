"""
Proxmox VE REST API client.

Thin synchronous wrapper over httpx for the calls the project subsystem
needs: node container listing and cluster SDN objects (zones, VNets,
subnets) plus the SDN "apply" action.

Request conventions:
- Base URL: https://<host>:8006/api2/json (kept as-is if host has a scheme)
- Auth:     Authorization: PVEAPIToken=<token_id>=<secret>
- Bodies:   application/x-www-form-urlencoded
- Replies:  {"data": ...}
"""

from __future__ import annotations

from typing import Any

import httpx

from proxicloud.models.requests import ContainerInfo
from proxicloud.proxmox.exceptions import (
    ProxmoxAPIError,
    ProxmoxConnectionError,
    ProxmoxError,
)
from proxicloud.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 8006
DEFAULT_TIMEOUT = 60.0


def build_base_url(host: str) -> str:
    """Normalize a host or URL into the API base URL."""
    host = host.strip().rstrip("/")
    if host.startswith("http://") or host.startswith("https://"):
        return f"{host}/api2/json"
    return f"https://{host}:{DEFAULT_PORT}/api2/json"


class ProxmoxClient:
    """
    Client for one Proxmox node (containers) and its cluster SDN.

    Usage:
        with ProxmoxClient(host, node, token_id, secret) as client:
            client.list_containers()
    """

    def __init__(
        self,
        host: str,
        node: str,
        token_id: str,
        token_secret: str,
        insecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = build_base_url(host)
        self.node = node
        self._http = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"PVEAPIToken={token_id}={token_secret}"},
            verify=not insecure,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> ProxmoxClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Request Helper
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        data: dict[str, Any] | None = None,
        context: str = "request",
    ) -> Any:
        """
        Send a request and return the "data" member of the reply.

        Raises:
            ProxmoxAPIError: Non-2xx response.
            ProxmoxConnectionError: Transport failure.
        """
        logger.debug(f"Proxmox API {method} {path}")
        try:
            response = self._http.request(method, path, data=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text
            logger.error(f"Proxmox HTTP {status} on {context}: {detail}")
            raise ProxmoxAPIError(
                f"{context} failed (status {status}): {detail}",
                status_code=status,
                detail=detail,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Proxmox request error on {context}: {e}")
            raise ProxmoxConnectionError(f"{context} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json().get("data")
        except ValueError as e:
            raise ProxmoxError(f"{context}: invalid JSON response") from e

    # =========================================================================
    # Containers
    # =========================================================================

    def list_containers(self) -> list[ContainerInfo]:
        """List the LXC containers of the configured node."""
        data = self._request("GET", f"/nodes/{self.node}/lxc", context="list containers")
        containers = [ContainerInfo.model_validate(item) for item in data or []]
        logger.debug(f"Found {len(containers)} containers on node {self.node}")
        return containers

    # =========================================================================
    # SDN
    # =========================================================================

    def list_zones(self) -> list[dict]:
        """List all SDN zones (each a dict with at least "zone" and "type")."""
        return self._request("GET", "/cluster/sdn/zones", context="list SDN zones") or []

    def create_zone(
        self,
        zone_id: str,
        zone_type: str,
        options: dict[str, Any] | None = None,
        dhcp_enabled: bool = True,
    ) -> None:
        """Create an SDN zone, with dnsmasq DHCP + PVE IPAM when enabled."""
        params: dict[str, Any] = {"zone": zone_id, "type": zone_type}
        if dhcp_enabled:
            params["dhcp"] = "dnsmasq"
            params["ipam"] = "pve"
        if options:
            params.update(options)

        self._request("POST", "/cluster/sdn/zones", params, context="create SDN zone")
        logger.info(f"Created SDN zone {zone_id} (type={zone_type})")

    def create_vnet(self, vnet_id: str, zone_id: str, vlan_tag: int = 0) -> None:
        params: dict[str, Any] = {"vnet": vnet_id, "zone": zone_id}
        if vlan_tag > 0:
            params["tag"] = vlan_tag

        self._request("POST", "/cluster/sdn/vnets", params, context="create VNet")
        logger.info(f"Created VNet {vnet_id} in zone {zone_id}")

    def create_subnet(
        self,
        vnet_id: str,
        cidr: str,
        gateway: str,
        dhcp_enabled: bool = True,
        dhcp_range: str = "",
    ) -> None:
        params: dict[str, Any] = {"subnet": cidr, "type": "subnet"}
        if gateway:
            params["gateway"] = gateway
        if dhcp_enabled:
            params["snat"] = 1
        if dhcp_range:
            params["dhcp-range"] = dhcp_range

        self._request(
            "POST",
            f"/cluster/sdn/vnets/{vnet_id}/subnets",
            params,
            context="create subnet",
        )
        logger.info(f"Created subnet {cidr} in VNet {vnet_id}")

    def delete_subnet(self, vnet_id: str, subnet_id: str) -> None:
        self._request(
            "DELETE",
            f"/cluster/sdn/vnets/{vnet_id}/subnets/{subnet_id}",
            context="delete subnet",
        )
        logger.info(f"Deleted subnet {subnet_id} of VNet {vnet_id}")

    def delete_vnet(self, vnet_id: str) -> None:
        self._request("DELETE", f"/cluster/sdn/vnets/{vnet_id}", context="delete VNet")
        logger.info(f"Deleted VNet {vnet_id}")

    def delete_zone(self, zone_id: str) -> None:
        self._request("DELETE", f"/cluster/sdn/zones/{zone_id}", context="delete SDN zone")
        logger.info(f"Deleted SDN zone {zone_id}")

    def apply_config(self) -> None:
        """Apply pending SDN changes (the GUI "Apply" button)."""
        self._request("PUT", "/cluster/sdn", context="apply SDN config")
        logger.info("SDN configuration applied")
