"""AWS connection settings.

Immutable configuration dataclass for the aioboto3 session and clients.
"""

from __future__ import annotations

from dataclasses import dataclass

from botocore.config import Config

from asgctl.constants import DEFAULT_REGION


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS connection configuration.

    Example:
        >>> from asgctl.providers.aws import AWS
        >>> config = AWS(region="eu-west-1")

    Args:
        region: AWS region of the managed groups. Default: eu-west-1
        request_timeout: Connect and read timeout for API calls, in seconds.
        profile: Named credentials profile. If None, the default chain is used.
    """

    region: str = DEFAULT_REGION
    request_timeout: int = 30
    profile: str | None = None

    def botocore_config(self) -> Config:
        return Config(
            region_name=self.region,
            connect_timeout=self.request_timeout,
            read_timeout=self.request_timeout,
        )
