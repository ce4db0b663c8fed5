"""
Network math for per-project SDN networks.

Pure helpers used to validate a project's subnet and gateway before any
Proxmox SDN object is created, and to derive the values Proxmox needs:

- zone/VNet identifier: "prj" + first 5 hex chars of the project ID
- DHCP range:           "start-address=<ip>,end-address=<ip>"
- subnet object ID:     "<zone>-<network>-<prefix>"

Only IPv4 subnets are supported. Address arithmetic is done on 32-bit
integers; ipaddress is only used to parse and format.

Examples (10.0.1.0/24, gateway 10.0.1.1):
- 254 usable hosts
- DHCP block: 40% of usable = 101 addresses, starting at offset 152
- Result: start-address=10.0.1.152,end-address=10.0.1.252
"""

from __future__ import annotations

import hashlib
import ipaddress

SDN_ID_PREFIX = "prj"
SDN_ID_HASH_CHARS = 5

# Share of usable hosts handed to DHCP, and where the block starts.
# The low part of the subnet stays free for static addresses.
DHCP_BLOCK_NUMERATOR = 2  # 2/5 = 40%
DHCP_OFFSET_NUMERATOR = 3  # 3/5 = 60%
DHCP_RATIO_DENOMINATOR = 5
DHCP_MIN_BLOCK = 10
DHCP_MIN_OFFSET = 10


# =============================================================================
# Parsing Helpers
# =============================================================================


def _parse_ipv4_cidr(cidr: str) -> tuple[ipaddress.IPv4Address, ipaddress.IPv4Network]:
    """
    Parse "a.b.c.d/prefix" into (address, network).

    The prefix part is mandatory and must be a plain integer; host bits in
    the address are allowed (the caller decides whether that is an error).

    Raises:
        ValueError: If the string is not an IPv4 CIDR.
    """
    if not cidr or "/" not in cidr:
        raise ValueError(f"invalid CIDR '{cidr}': expected address/prefix")

    address_part, prefix_part = cidr.strip().split("/", 1)
    if not prefix_part.isdigit():
        raise ValueError(f"invalid CIDR '{cidr}': prefix must be an integer")

    try:
        address = ipaddress.IPv4Address(address_part)
        network = ipaddress.IPv4Network(f"{address_part}/{prefix_part}", strict=False)
    except ipaddress.AddressValueError as e:
        raise ValueError(f"invalid CIDR '{cidr}': {e}") from e
    except ipaddress.NetmaskValueError as e:
        raise ValueError(f"invalid CIDR '{cidr}': {e}") from e

    return address, network


def _int_to_ip(value: int) -> str:
    return str(ipaddress.IPv4Address(value & 0xFFFFFFFF))


# =============================================================================
# Validation
# =============================================================================


def is_valid_cidr(cidr: str) -> bool:
    """
    Check that a string is an IPv4 CIDR naming a network address.

    "10.0.1.0/24" is valid, "10.0.1.5/24" is not (host bits set).
    Empty or unparsable input is invalid.
    """
    try:
        address, network = _parse_ipv4_cidr(cidr)
    except ValueError:
        return False
    return address == network.network_address


def validate_gateway_in_subnet(subnet: str, gateway: str) -> None:
    """
    Validate that a gateway is a usable host address inside a subnet.

    Args:
        subnet: Subnet in CIDR notation (e.g., "10.0.1.0/24")
        gateway: Gateway IP (e.g., "10.0.1.1")

    Raises:
        ValueError: If either value is empty or unparsable, the gateway is
            outside the subnet, or it is the network or broadcast address.
    """
    if not subnet:
        raise ValueError("subnet cannot be empty")
    if not gateway:
        raise ValueError("gateway cannot be empty")

    try:
        network = ipaddress.ip_network(subnet.strip(), strict=False)
    except ValueError as e:
        raise ValueError(f"invalid subnet CIDR: {e}") from e

    try:
        gateway_ip = ipaddress.ip_address(gateway.strip())
    except ValueError as e:
        raise ValueError(f"invalid gateway IP address: {gateway}") from e

    if gateway_ip.version != network.version or gateway_ip not in network:
        raise ValueError(f"gateway {gateway} is not within subnet {subnet}")

    if gateway_ip == network.network_address:
        raise ValueError(
            f"gateway cannot be the network address ({network.network_address})"
        )

    # IPv6 has no broadcast address
    if network.version == 4:
        broadcast = int(network.network_address) | int(network.hostmask)
        if int(gateway_ip) == broadcast:
            raise ValueError(
                f"gateway cannot be the broadcast address ({_int_to_ip(broadcast)})"
            )


# =============================================================================
# DHCP Range
# =============================================================================


def calculate_dhcp_range(subnet: str, gateway: str) -> str:
    """
    Calculate the DHCP range handed to a Proxmox SDN subnet.

    The block covers 40% of the usable hosts (at least 10) and starts at
    60% of the usable hosts (at least offset 10). If the block would run
    past the last usable address it is shifted down to end there. The
    gateway is never part of the returned range.

    Args:
        subnet: IPv4 subnet in CIDR notation
        gateway: Gateway IP inside the subnet

    Returns:
        "start-address=<ip>,end-address=<ip>"

    Raises:
        ValueError: If the subnet is not IPv4, the gateway is unparsable, or
            the subnet is too small to hold a range of at least two addresses.
    """
    try:
        network = ipaddress.ip_network(subnet.strip(), strict=False)
    except (AttributeError, ValueError) as e:
        raise ValueError(f"invalid subnet CIDR: {subnet}") from e

    if network.max_prefixlen != 32:
        raise ValueError("only IPv4 subnets are supported")

    try:
        gateway_int = int(ipaddress.IPv4Address(gateway.strip()))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"invalid gateway IP address: {gateway}") from e

    usable = (1 << (32 - network.prefixlen)) - 2
    if usable < 2:
        raise ValueError(f"subnet {subnet} is too small for a DHCP range")

    block = max(
        usable * DHCP_BLOCK_NUMERATOR // DHCP_RATIO_DENOMINATOR, DHCP_MIN_BLOCK
    )
    block = min(block, usable)

    offset = max(
        usable * DHCP_OFFSET_NUMERATOR // DHCP_RATIO_DENOMINATOR, DHCP_MIN_OFFSET
    )
    # Usable host offsets are 1..usable
    if offset + block - 1 > usable:
        offset = max(usable - block + 1, 1)

    base = int(network.network_address)
    start = base + offset
    end = start + block - 1

    # Cut the gateway out of the block, keeping the larger side
    if start <= gateway_int <= end:
        if gateway_int == start:
            start += 1
        elif gateway_int == end:
            end -= 1
        elif gateway_int - start >= end - gateway_int:
            end = gateway_int - 1
        else:
            start = gateway_int + 1

    if end <= start:
        raise ValueError(
            f"subnet {subnet} leaves no DHCP range after excluding gateway {gateway}"
        )

    return f"start-address={_int_to_ip(start)},end-address={_int_to_ip(end)}"


def parse_dhcp_range(dhcp_range: str) -> tuple[str, str]:
    """
    Parse a Proxmox DHCP range string.

    Example: "start-address=10.0.1.100,end-address=10.0.1.200"
    -> ("10.0.1.100", "10.0.1.200")

    Raises:
        ValueError: If the string is empty or either key is missing.
    """
    if not dhcp_range:
        raise ValueError("DHCP range is empty")

    start_ip = ""
    end_ip = ""
    for part in dhcp_range.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        key = key.strip()
        if key == "start-address":
            start_ip = value.strip()
        elif key == "end-address":
            end_ip = value.strip()

    if not start_ip or not end_ip:
        raise ValueError(f"invalid DHCP range format: {dhcp_range}")

    return start_ip, end_ip


# =============================================================================
# Identifiers
# =============================================================================


def generate_sdn_identifier(project_id: str, project_name: str) -> str:
    """
    Generate the 8-character zone/VNet identifier for a project.

    Proxmox limits SDN zone and VNet IDs to 8 characters, so the ID is
    "prj" + the first 5 hex chars of the project ID (e.g. "prja1b2c").
    A project ID shorter than 5 characters falls back to the SHA-256 of the
    project name.
    """
    if len(project_id) >= SDN_ID_HASH_CHARS:
        return SDN_ID_PREFIX + project_id[:SDN_ID_HASH_CHARS]

    digest = hashlib.sha256(project_name.encode()).hexdigest()
    return SDN_ID_PREFIX + digest[:SDN_ID_HASH_CHARS]


def sdn_subnet_id(zone: str, cidr: str) -> str:
    """
    Get the Proxmox subnet object ID for a subnet in a zone.

    Proxmox names subnets "<zone>-<network>-<prefix>",
    e.g. "prja1b2c-10.0.1.0-24".
    """
    network = ipaddress.ip_network(cidr.strip(), strict=False)
    return f"{zone}-{network.network_address}-{network.prefixlen}"
