"""Fleet Initializer.

Cold-starts a group: quiesce it to zero, provision its original desired
capacity as spot instances spread across zones, subnets and recommended
types, attach them, restore ``min_size`` and wait for the group to settle.
"""

from __future__ import annotations

from functools import partial

from loguru import logger

from asgctl.allocation import split_across_zones
from asgctl.core import EmptyInput, NotFound
from asgctl.polling import PollingPolicy
from asgctl.providers.aws.membership import GroupMembership, chunked
from asgctl.providers.aws.provisioner import FleetProvisioner
from asgctl.providers.aws.state import GroupStateReader
from asgctl.recommender import Recommender
from asgctl.selection import select_recommendations
from asgctl.types import InstanceId, InstanceTypeRecommendation, Placement, Zone

from .locks import GroupLocks
from .saga import Saga


class FleetInitializer:
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

    async def initialize(self, group_name: str) -> list[InstanceId]:
        """Provision and attach the group's full desired capacity.

        Returns:
            Ids of the attached instances.

        Raises:
            NotFound: If the group or its launch settings are unknown.
            EmptyInput: If a zone has no recommendations.
            ProvisioningTimeout: If provisioning or settling exceeds its deadline.
        """
        log = logger.bind(component="initializer", operation="initialize", group=group_name)

        async with self.locks.lock(group_name):
            group, template = await self.reader.describe_group(group_name)
            log.info(
                f"Initializing {group_name}: desired={group.desired_capacity} "
                f"min={group.min_size} base type={template.instance_type}"
            )

            async with Saga("initialize", log) as saga:
                await self.membership.update_sizing(group_name, min_size=0, desired_capacity=0)
                saga.always(
                    f"restore min size to {group.min_size}",
                    partial(self.membership.set_min_size, group_name, group.min_size),
                )

                subnets = await self.reader.subnets_per_zone(group.subnet_ids)
                zones = sorted(subnets)
                if not zones and group.desired_capacity > 0:
                    raise NotFound("subnets", f"of group {group_name}")
                recommendations = await self.recommender.recommend(zones, template.instance_type)

                counts = split_across_zones(group.desired_capacity, zones)
                types: dict[Zone, list[InstanceTypeRecommendation]] = {}
                for zone, count in counts.items():
                    if count == 0:
                        continue
                    try:
                        types[zone] = select_recommendations(recommendations.get(zone, []), count)
                    except EmptyInput:
                        raise EmptyInput(f"No instance type recommendations for {zone}") from None

                instance_ids = await self.provisioner.provision(
                    counts,
                    subnets,
                    types,
                    template,
                    placement=Placement(group.placement_group, template.placement_tenancy),
                )
                attached: set[InstanceId] = set()
                saga.on_failure(
                    "terminate unattached instances",
                    lambda: self.membership.terminate([i for i in instance_ids if i not in attached]),
                )

                for batch in chunked(instance_ids):
                    await self.membership.attach(group_name, batch)
                    attached.update(batch)

            await self.membership.wait_no_pending(group_name, self.group_pending_policy)

        log.info(f"Initialized {group_name} with {len(instance_ids)} instances")
        return instance_ids


__all__ = ["FleetInitializer"]
