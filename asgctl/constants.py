"""Centralized constants and enums for asgctl.

Event names, AWS state strings and API limits are defined here so the
orchestrators never compare against raw literals.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Inbound Events
# =============================================================================


class EventType(StrEnum):
    """Event types understood by the router."""

    SPOT_TERMINATION_NOTICE = "prometheus.server.alert.SpotTerminationNotice"
    SPOT_TOO_EXPENSIVE = "prometheus.server.alert.SpotInstanceTooExpensive"
    INITIALIZING = "initializing"
    UPSCALING = "upscaling"
    DOWNSCALING = "downscaling"
    REBALANCING = "rebalancing"


INSTANCE_ID_KEY: Final = "instance_id"
GROUP_NAME_KEY: Final = "asg_name"


# =============================================================================
# EC2 / Auto Scaling States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


class SpotRequestState(StrEnum):
    """EC2 spot instance request states."""

    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    FAILED = "failed"


SPOT_REQUEST_TERMINAL_STATES: Final = frozenset({
    SpotRequestState.CLOSED,
    SpotRequestState.CANCELLED,
    SpotRequestState.FAILED,
})

# Auto Scaling lifecycle states that count as "pending" (Pending, Pending:Wait, Pending:Proceed)
PENDING_LIFECYCLE_PREFIX: Final = "Pending"


# =============================================================================
# API Limits and Defaults
# =============================================================================

# AttachInstances / DetachInstances accept at most 20 instance ids per call
MEMBERSHIP_BATCH_SIZE: Final = 20

DEFAULT_REGION: Final = "eu-west-1"
DEFAULT_RECOMMENDER_URL: Final = "http://localhost:9090"
DEFAULT_BIND_ADDRESS: Final = ":8080"
DEFAULT_ORIGINAL_TEMPLATE_SUFFIX: Final = "-ht-orig"

# Polling defaults (seconds)
SPOT_REQUEST_POLL_INTERVAL: Final = 1.0
SPOT_REQUEST_POLL_TIMEOUT: Final = 600.0
INSTANCE_RUNNING_POLL_INTERVAL: Final = 1.0
INSTANCE_RUNNING_POLL_TIMEOUT: Final = 600.0
GROUP_PENDING_POLL_INTERVAL: Final = 1.0
GROUP_PENDING_POLL_TIMEOUT: Final = 900.0
