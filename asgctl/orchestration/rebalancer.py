"""Fleet Rebalancer.

Detects drift between a group's live instance-type composition and the
current recommendations, and replaces every bucket that is no longer
recommended. Replacement capacity is attached before the old bucket is
detached, so the group never runs below its desired capacity.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from functools import partial

from loguru import logger

from asgctl.polling import PollingPolicy
from asgctl.providers.aws.membership import GroupMembership, chunked
from asgctl.providers.aws.provisioner import FleetProvisioner
from asgctl.providers.aws.state import GroupStateReader
from asgctl.recommender import Recommender
from asgctl.selection import select_recommendations
from asgctl.types import (
    InstanceId,
    InstanceTypeKey,
    InstanceTypeRecommendation,
    LaunchTemplate,
    Placement,
    SubnetId,
    Zone,
)

from .locks import GroupLocks
from .saga import Saga


def is_conforming(
    key: InstanceTypeKey,
    recommendations: Mapping[Zone, Sequence[InstanceTypeRecommendation]],
) -> bool:
    """A bucket conforms iff it is spot and its type is recommended for its zone."""
    if not key.is_spot:
        return False
    return any(r.type_name == key.instance_type for r in recommendations.get(key.availability_zone, ()))


class FleetRebalancer:
    def __init__(
        self,
        reader: GroupStateReader,
        membership: GroupMembership,
        provisioner: FleetProvisioner,
        recommender: Recommender,
        locks: GroupLocks,
        group_pending_policy: PollingPolicy | None = None,
    ) -> None:
        self.reader = reader
        self.membership = membership
        self.provisioner = provisioner
        self.recommender = recommender
        self.locks = locks
        self.group_pending_policy = group_pending_policy or PollingPolicy()

    async def rebalance(self, group_name: str) -> dict[InstanceTypeKey, list[InstanceId]]:
        """Replace every non-conforming bucket of ``group_name``.

        Buckets are processed one at a time in key order.

        Returns:
            Replacement instance ids per replaced bucket. Empty when the
            group already conforms or has no members.
        """
        log = logger.bind(component="rebalancer", operation="rebalance", group=group_name)

        async with self.locks.lock(group_name):
            group, template = await self.reader.describe_group(group_name)
            if not group.member_instance_ids:
                log.info(f"{group_name} has no members, nothing to rebalance")
                return {}

            state = await self.reader.describe_instance_type_state(group_name, group.member_instance_ids)
            subnets = await self.reader.subnets_per_zone(group.subnet_ids)
            base_type = await self.reader.find_base_instance_type(group, template)
            recommendations = await self.recommender.recommend(sorted(subnets), base_type)

            replaced: dict[InstanceTypeKey, list[InstanceId]] = {}
            for key, instance_ids in state.items():
                if is_conforming(key, recommendations):
                    log.debug(f"{key.instance_type} in {key.availability_zone} still recommended")
                    continue
                if key.availability_zone not in subnets:
                    log.warning(
                        f"{len(instance_ids)}x {key.instance_type} in {key.availability_zone}: "
                        "zone has no group subnets, leaving bucket as is"
                    )
                    continue

                new_ids = await self._replace_bucket(
                    group_name,
                    key,
                    instance_ids,
                    subnets[key.availability_zone],
                    recommendations.get(key.availability_zone, []),
                    template,
                )
                if new_ids:
                    replaced[key] = new_ids

        log.info(f"Rebalanced {group_name}: {len(replaced)} of {len(state)} buckets replaced")
        return replaced

    async def _replace_bucket(
        self,
        group_name: str,
        key: InstanceTypeKey,
        instance_ids: Sequence[InstanceId],
        subnets: Sequence[SubnetId],
        recommendations: Sequence[InstanceTypeRecommendation],
        template: LaunchTemplate,
    ) -> list[InstanceId]:
        zone = key.availability_zone
        log = logger.bind(
            component="rebalancer", operation="replace_bucket", group=group_name,
        )

        group = await self.reader.read_group(group_name)
        old_ids = [i for i in instance_ids if i in group.member_instance_ids]
        if not old_ids:
            log.info(f"{key.instance_type} in {zone} already left {group_name}, skipping")
            return []
        size = len(old_ids)
        types = select_recommendations(recommendations, size)
        log.info(
            f"Replacing {size}x {key.instance_type} in {zone} "
            f"with {', '.join(t.type_name for t in types)}"
        )

        async with Saga("rebalance", log) as saga:
            new_ids = await self.provisioner.provision(
                {zone: size},
                {zone: subnets},
                {zone: types},
                template,
                placement=Placement(group.placement_group, template.placement_tenancy),
            )
            attached: set[InstanceId] = set()
            saga.on_failure(
                "terminate unattached replacements",
                lambda: self.membership.terminate([i for i in new_ids if i not in attached]),
            )

            peak = group.desired_capacity + len(new_ids)
            if peak > group.max_size:
                await self.membership.set_max_size(group_name, peak)
                saga.always(
                    f"restore max size to {group.max_size}",
                    partial(self.membership.set_max_size, group_name, group.max_size),
                )

            for batch in chunked(new_ids):
                await self.membership.attach(group_name, batch)
                attached.update(batch)

            floor = peak - len(old_ids)
            if group.min_size > floor:
                await self.membership.set_min_size(group_name, floor)
                saga.always(
                    f"restore min size to {group.min_size}",
                    partial(self.membership.set_min_size, group_name, group.min_size),
                )

            await self.membership.detach(group_name, old_ids)
            await self.membership.terminate(old_ids)

        await self.membership.wait_no_pending(group_name, self.group_pending_policy)
        return new_ids


__all__ = [
    "FleetRebalancer",
    "is_conforming",
]
