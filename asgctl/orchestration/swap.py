"""Single-Instance Swap Orchestrator.

Replaces one group member (typically a spot instance about to be
reclaimed) with a freshly provisioned instance of the best recommended
type, keeping the group's capacity accounting intact:

    Fetch -> Recommend -> LowerMinSize -> Detach -> Provision -> Attach -> RestoreMinSize

Everything up to the attach runs inside a saga: on failure or
cancellation the replacement is terminated, the original is re-attached
and ``min_size`` is restored, all best-effort, before the error propagates.
Once the replacement has joined, restoring ``min_size`` is only logged
on failure.
"""

from __future__ import annotations

from functools import partial

from loguru import logger

from asgctl.core import AsgctlError
from asgctl.providers.aws.membership import GroupMembership
from asgctl.providers.aws.provisioner import FleetProvisioner
from asgctl.providers.aws.state import GroupStateReader
from asgctl.recommender import Recommender
from asgctl.selection import select_cheapest
from asgctl.types import GroupDescriptor, InstanceId, InstanceInfo, Placement

from .locks import GroupLocks
from .saga import Saga


def needs_min_size_decrement(group: GroupDescriptor) -> bool:
    """Detaching with a desired-capacity decrement would hit the min size floor."""
    return group.min_size >= group.desired_capacity and group.min_size > 0


class SwapOrchestrator:
    """Swap, swap-and-terminate and plain detach of a single instance."""

    def __init__(
        self,
        reader: GroupStateReader,
        membership: GroupMembership,
        provisioner: FleetProvisioner,
        recommender: Recommender,
        locks: GroupLocks,
    ) -> None:
        self.reader = reader
        self.membership = membership
        self.provisioner = provisioner
        self.recommender = recommender
        self.locks = locks

    async def swap(self, instance_id: InstanceId) -> InstanceId:
        """Replace ``instance_id`` in its group and return the replacement's id.

        Raises:
            NotFound: If the instance or its group is unknown.
            EmptyInput: If the recommender has nothing for the instance's zone.
            ProvisioningTimeout: If the replacement does not come up in time.
            AttachFailed: If the replacement cannot join the group.
        """
        info = await self.reader.resolve_instance(instance_id)
        log = logger.bind(
            component="swap", operation="swap", group=info.group_name, instance_id=instance_id,
        )
        async with self.locks.lock(info.group_name):
            return await self._swap(info, log)

    async def _swap(self, info: InstanceInfo, log) -> InstanceId:
        group, template = await self.reader.describe_group(info.group_name)
        zone = info.availability_zone

        recommendations = await self.recommender.recommend([zone], info.instance_type)
        chosen = select_cheapest(recommendations.get(zone, []))
        log.info(
            f"Replacing {info.instance_type} with {chosen.type_name} in {zone} "
            f"(min={group.min_size}, desired={group.desired_capacity})"
        )

        lowered = needs_min_size_decrement(group)
        async with Saga("swap", log) as saga:
            if lowered:
                await self.membership.set_min_size(group.name, group.min_size - 1)
                saga.on_failure(
                    f"restore min size to {group.min_size}",
                    partial(self.membership.set_min_size, group.name, group.min_size),
                )

            await self.membership.detach(group.name, [info.id])
            saga.on_failure(
                f"re-attach {info.id}",
                partial(self.membership.attach, group.name, [info.id]),
            )

            new_ids = await self.provisioner.provision(
                {zone: 1},
                {zone: [info.subnet_id]},
                {zone: [chosen]},
                template,
                placement=Placement(group.placement_group, template.placement_tenancy),
                instance_profile_arn=info.instance_profile_arn,
            )
            saga.on_failure(
                f"terminate replacement {', '.join(new_ids)}",
                partial(self.membership.terminate, new_ids),
            )

            await self.membership.attach(group.name, new_ids)

        # The replacement is in service; a failed restore must not undo the swap
        if lowered:
            try:
                await self.membership.set_min_size(group.name, group.min_size)
            except AsgctlError as e:
                log.error(f"Failed to restore min size of {group.name} to {group.min_size}: {e}")

        log.info(f"Swapped {info.id} for {new_ids[0]}")
        return new_ids[0]

    async def swap_and_terminate(self, instance_id: InstanceId) -> InstanceId:
        """Swap, then terminate the original. A failed terminate is only logged."""
        new_id = await self.swap(instance_id)
        try:
            await self.membership.terminate([instance_id])
        except AsgctlError as e:
            logger.bind(component="swap", operation="swap_and_terminate", instance_id=instance_id).error(
                f"Failed to terminate original instance {instance_id}: {e}"
            )
        return new_id

    async def detach(self, instance_id: InstanceId) -> None:
        """Remove ``instance_id`` from its group without a replacement.

        Desired capacity drops by one. ``min_size`` is lowered by one when it
        would block the detach, and stays lowered.
        """
        info = await self.reader.resolve_instance(instance_id)
        log = logger.bind(
            component="swap", operation="detach", group=info.group_name, instance_id=instance_id,
        )
        async with self.locks.lock(info.group_name):
            group = await self.reader.read_group(info.group_name)
            if needs_min_size_decrement(group):
                await self.membership.set_min_size(group.name, group.min_size - 1)
            await self.membership.detach(group.name, [instance_id])
        log.info(f"Detached {instance_id} from {group.name}")


__all__ = [
    "SwapOrchestrator",
    "needs_min_size_decrement",
]
