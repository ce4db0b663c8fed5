"""
Enumeration types for ProxiCloud.

This module defines the enumeration types shared by the project store,
the provisioning orchestrator and the server configuration.
"""

from enum import Enum


# =============================================================================
# Network-Related Enums
# =============================================================================


class NetworkState(str, Enum):
    """
    Lifecycle of a project's dedicated SDN network.

    State transitions:
        NONE -> PROVISIONING -> PROVISIONED
        NONE -> PROVISIONING -> ROLLED_BACK (creation failed, resources removed)
        PROVISIONED -> TEARING_DOWN -> GONE
    """

    NONE = "none"  # Project has no dedicated network
    PROVISIONING = "provisioning"  # Zone/VNet/subnet creation in progress
    PROVISIONED = "provisioned"  # Network exists and is stored on the project
    ROLLED_BACK = "rolled_back"  # Creation failed and was compensated
    TEARING_DOWN = "tearing_down"  # Subnet/VNet/zone deletion in progress
    GONE = "gone"  # Network removed together with the project


class ContainerStatus(str, Enum):
    """LXC container status as reported by Proxmox."""

    RUNNING = "running"
    STOPPED = "stopped"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels for ProxiCloud.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
