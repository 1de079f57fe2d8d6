"""AWS client factories with dependency injection.

Provides typed client factories that can be injected into components.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from injector import Module, provider, singleton

from .config import AWS

if TYPE_CHECKING:
    from types_aiobotocore_autoscaling import AutoScalingClient
    from types_aiobotocore_ec2 import EC2Client


# =============================================================================
# Client Type
# =============================================================================

type Client[T] = Callable[[], AbstractAsyncContextManager[T]]
"""Factory that returns an async context manager for a client."""

# =============================================================================
# Wrapper Classes for DI (each needs a unique type)
# =============================================================================


class _ClientFactory:
    def __init__(self, factory: Callable[[], AbstractAsyncContextManager[Any]]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


class EC2ClientFactory(_ClientFactory):
    """Wrapper for EC2 client factory."""

    if TYPE_CHECKING:
        def __call__(self) -> AbstractAsyncContextManager[EC2Client]: ...


class AutoScalingClientFactory(_ClientFactory):
    """Wrapper for Auto Scaling client factory."""

    if TYPE_CHECKING:
        def __call__(self) -> AbstractAsyncContextManager[AutoScalingClient]: ...


def _session_client(session: aioboto3.Session, service: str, config: AWS) -> Client[Any]:
    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        async with session.client(
            service,  # type: ignore[call-overload]
            region_name=config.region,
            config=config.botocore_config(),
        ) as client:
            yield client
    return factory


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module that provides AWS client factories.

    Usage:
        >>> from injector import Injector
        >>> from asgctl.providers.aws import AWSModule, AWS
        >>>
        >>> injector = Injector([AWSModule()])
        >>> injector.binder.bind(AWS, to=AWS(region="eu-west-1"))
        >>>
        >>> # In a component:
        >>> class MyReader:
        ...     ec2: EC2ClientFactory
        ...
        ...     async def do_something(self):
        ...         async with self.ec2() as client:
        ...             await client.describe_instances()
    """

    @singleton
    @provider
    def provide_session(self, config: AWS) -> aioboto3.Session:
        """Provide singleton aioboto3 session."""
        return aioboto3.Session(profile_name=config.profile)

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        """Provide EC2 client factory."""
        return EC2ClientFactory(_session_client(session, "ec2", config))

    @singleton
    @provider
    def provide_autoscaling(self, session: aioboto3.Session, config: AWS) -> AutoScalingClientFactory:
        """Provide Auto Scaling client factory."""
        return AutoScalingClientFactory(_session_client(session, "autoscaling", config))


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "AWSModule",
    "AutoScalingClientFactory",
    "Client",
    "EC2ClientFactory",
]
