"""
Network Helper Endpoints.

Lets clients preview the DHCP range a project network would get before
creating the project.
"""

from fastapi import APIRouter, Query

from proxicloud.models.sdn_network import (
    calculate_dhcp_range,
    is_valid_cidr,
    parse_dhcp_range,
    validate_gateway_in_subnet,
)
from proxicloud.server.services.exceptions import ValidationError

router = APIRouter()


@router.get("/network/dhcp-range")
async def preview_dhcp_range(
    subnet: str = Query(..., description="Subnet in CIDR notation"),
    gateway: str = Query(..., description="Gateway IP inside the subnet"),
):
    """Validate a subnet/gateway pair and return its DHCP range."""
    if not is_valid_cidr(subnet):
        raise ValidationError(f"invalid subnet CIDR: {subnet}")

    try:
        validate_gateway_in_subnet(subnet, gateway)
        dhcp_range = calculate_dhcp_range(subnet, gateway)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    start_address, end_address = parse_dhcp_range(dhcp_range)
    return {
        "subnet": subnet,
        "gateway": gateway,
        "dhcp_range": dhcp_range,
        "start_address": start_address,
        "end_address": end_address,
    }
