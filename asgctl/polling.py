"""Bounded polling barriers.

Every "wait until X" step in the controller is a fixed-interval poll with a
deadline. Only a ``NotReady`` signal is retried; any other exception from
the check propagates immediately.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from asgctl.core import ProvisioningTimeout


class NotReady(Exception):
    """Condition not met yet - retry."""

    def __init__(self, pending: Iterable[str] = ()) -> None:
        self.pending = tuple(pending)
        super().__init__(", ".join(self.pending))


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Fixed poll interval and overall deadline, in seconds."""

    interval: float = 1.0
    timeout: float = 600.0

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError(f"interval must be >= 0, got {self.interval}")
        if self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")


async def wait_until[T](
    check: Callable[[], Awaitable[T]],
    policy: PollingPolicy,
    what: str,
) -> T:
    """Call ``check`` every ``policy.interval`` seconds until it stops raising ``NotReady``.

    Returns:
        The value returned by the first successful ``check``.

    Raises:
        ProvisioningTimeout: If ``policy.timeout`` elapses first. ``pending``
            carries whatever the last ``NotReady`` reported.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(policy.timeout),
            wait=wait_fixed(policy.interval),
            retry=retry_if_exception_type(NotReady),
        ):
            with attempt:
                result = await check()
    except RetryError as e:
        last = e.last_attempt.exception()
        pending = last.pending if isinstance(last, NotReady) else ()
        raise ProvisioningTimeout(what, policy.timeout, pending) from e

    return result


__all__ = [
    "NotReady",
    "PollingPolicy",
    "wait_until",
]
