"""Group membership and instance lifecycle mutations.

Attach/detach run in batches of at most 20 ids (the Auto Scaling API
limit). Sizing changes go through ``UpdateAutoScalingGroup``.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from asgctl.constants import MEMBERSHIP_BATCH_SIZE
from asgctl.core import AttachFailed, DetachFailed
from asgctl.polling import NotReady, PollingPolicy, wait_until
from asgctl.types import InstanceId

from .clients import AutoScalingClientFactory, EC2ClientFactory
from .errors import error_code, translate_errors
from .state import GroupStateReader


def chunked(ids: Sequence[str], size: int = MEMBERSHIP_BATCH_SIZE) -> Iterator[list[str]]:
    for start in range(0, len(ids), size):
        yield list(ids[start:start + size])


def _reason(exc: ClientError | BotoCoreError) -> str:
    if isinstance(exc, ClientError):
        return f"{error_code(exc)}: {exc}"
    return str(exc)


class GroupMembership:
    """Attach, detach, resize and terminate for Auto Scaling groups."""

    def __init__(
        self,
        ec2: EC2ClientFactory,
        autoscaling: AutoScalingClientFactory,
        reader: GroupStateReader,
    ) -> None:
        self.ec2 = ec2
        self.autoscaling = autoscaling
        self.reader = reader
        self._log = logger.bind(component="membership")

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def attach(self, group_name: str, instance_ids: Sequence[InstanceId]) -> None:
        """Attach instances; the group's desired capacity grows by the same amount."""
        async with self.autoscaling() as asg:
            for batch in chunked(instance_ids):
                try:
                    await asg.attach_instances(AutoScalingGroupName=group_name, InstanceIds=batch)
                except (ClientError, BotoCoreError) as e:
                    raise AttachFailed(group_name, tuple(batch), _reason(e)) from e
                self._log.info(f"Attached {', '.join(batch)} to {group_name}")

    async def detach(
        self,
        group_name: str,
        instance_ids: Sequence[InstanceId],
        decrement_desired: bool = True,
    ) -> None:
        async with self.autoscaling() as asg:
            for batch in chunked(instance_ids):
                try:
                    await asg.detach_instances(
                        AutoScalingGroupName=group_name,
                        InstanceIds=batch,
                        ShouldDecrementDesiredCapacity=decrement_desired,
                    )
                except (ClientError, BotoCoreError) as e:
                    raise DetachFailed(group_name, tuple(batch), _reason(e)) from e
                self._log.info(f"Detached {', '.join(batch)} from {group_name}")

    # -------------------------------------------------------------------------
    # Sizing
    # -------------------------------------------------------------------------

    async def update_sizing(
        self,
        group_name: str,
        *,
        min_size: int | None = None,
        max_size: int | None = None,
        desired_capacity: int | None = None,
    ) -> None:
        params: dict[str, int] = {}
        if min_size is not None:
            params["MinSize"] = min_size
        if max_size is not None:
            params["MaxSize"] = max_size
        if desired_capacity is not None:
            params["DesiredCapacity"] = desired_capacity
        if not params:
            return

        async with self.autoscaling() as asg, translate_errors("UpdateAutoScalingGroup"):
            await asg.update_auto_scaling_group(AutoScalingGroupName=group_name, **params)
        self._log.info(f"{group_name}: {', '.join(f'{k}={v}' for k, v in params.items())}")

    async def set_min_size(self, group_name: str, min_size: int) -> None:
        await self.update_sizing(group_name, min_size=min_size)

    async def set_max_size(self, group_name: str, max_size: int) -> None:
        await self.update_sizing(group_name, max_size=max_size)

    # -------------------------------------------------------------------------
    # Instance Lifecycle
    # -------------------------------------------------------------------------

    async def terminate(self, instance_ids: Sequence[InstanceId]) -> None:
        if not instance_ids:
            return
        async with self.ec2() as ec2, translate_errors("TerminateInstances"):
            await ec2.terminate_instances(InstanceIds=list(instance_ids))
        self._log.info(f"Terminated {', '.join(instance_ids)}")

    async def cancel_spot_requests(self, request_ids: Sequence[str]) -> None:
        if not request_ids:
            return
        async with self.ec2() as ec2, translate_errors("CancelSpotInstanceRequests"):
            await ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=list(request_ids))
        self._log.info(f"Cancelled spot requests {', '.join(request_ids)}")

    async def wait_no_pending(self, group_name: str, policy: PollingPolicy) -> None:
        """Block until the group reports no members in a pending lifecycle state."""

        async def check() -> None:
            pending = await self.reader.pending_instances(group_name)
            if pending:
                raise NotReady(pending)

        await wait_until(check, policy, f"pending instances of {group_name}")
        self._log.debug(f"{group_name}: no pending instances")


__all__ = [
    "GroupMembership",
    "chunked",
]
