"""asgctl - fleet-lifecycle controller for AWS Auto Scaling groups.

Reacts to capacity events (spot termination notices, expensive spot
instances, initialization and rebalancing requests) and drives a group's
membership toward the recommended spot composition.

Example:

    from asgctl import AlertEvent, ControllerConfig, EventRouter, create_injector

    injector = create_injector(ControllerConfig(region="eu-west-1"))
    router = injector.get(EventRouter)
    await router.route(AlertEvent("rebalancing", {"asg_name": "web-asg"}))
"""

from asgctl.config import ControllerConfig, load_config
from asgctl.constants import EventType
from asgctl.core import (
    AsgctlError,
    AttachFailed,
    DetachFailed,
    EmptyInput,
    InvalidEvent,
    NotFound,
    ProvisioningFailed,
    ProvisioningTimeout,
    UpstreamUnavailable,
)
from asgctl.module import ControllerModule, create_injector
from asgctl.router import EventRouter
from asgctl.types import ActionResult, AlertEvent

__version__ = "0.1.0"

__all__ = [
    "ActionResult",
    "AlertEvent",
    "AsgctlError",
    "AttachFailed",
    "ControllerConfig",
    "ControllerModule",
    "DetachFailed",
    "EmptyInput",
    "EventRouter",
    "EventType",
    "InvalidEvent",
    "NotFound",
    "ProvisioningFailed",
    "ProvisioningTimeout",
    "UpstreamUnavailable",
    "create_injector",
    "load_config",
]
