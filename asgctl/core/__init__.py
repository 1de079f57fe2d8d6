from asgctl.core.exceptions import (
    AsgctlError,
    AttachFailed,
    ConfigurationError,
    DetachFailed,
    EmptyInput,
    InvalidEvent,
    MembershipError,
    NotFound,
    ProvisioningError,
    ProvisioningFailed,
    ProvisioningTimeout,
    UpstreamUnavailable,
)

__all__ = [
    "AsgctlError",
    "AttachFailed",
    "ConfigurationError",
    "DetachFailed",
    "EmptyInput",
    "InvalidEvent",
    "MembershipError",
    "NotFound",
    "ProvisioningError",
    "ProvisioningFailed",
    "ProvisioningTimeout",
    "UpstreamUnavailable",
]
