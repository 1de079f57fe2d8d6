"""Group State Reader.

Read-only view of Auto Scaling groups, their launch settings and their
live members. Every call goes straight to the control plane; nothing is
cached, since attach/detach/terminate effects become visible eventually.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from asgctl.constants import DEFAULT_ORIGINAL_TEMPLATE_SUFFIX, PENDING_LIFECYCLE_PREFIX
from asgctl.core import NotFound
from asgctl.types import (
    GroupDescriptor,
    InstanceId,
    InstanceInfo,
    InstanceTypeKey,
    InstanceTypeState,
    LaunchTemplate,
    LaunchTemplateRef,
    SubnetId,
    Zone,
)

from .clients import AutoScalingClientFactory, EC2ClientFactory
from .errors import translate_errors


def _opt(value: Any) -> str | None:
    """Empty strings from the API mean "unset"."""
    return str(value) if value not in (None, "") else None


# =============================================================================
# Response Parsing
# =============================================================================


def parse_launch_template_ref(group: Mapping[str, Any]) -> LaunchTemplateRef:
    """Extract the launch configuration or launch template a group launches from."""
    if name := group.get("LaunchConfigurationName"):
        return LaunchTemplateRef("launch-configuration", name)

    spec = group.get("LaunchTemplate") or (
        group.get("MixedInstancesPolicy", {})
        .get("LaunchTemplate", {})
        .get("LaunchTemplateSpecification")
    )
    if spec:
        name = spec.get("LaunchTemplateName") or spec["LaunchTemplateId"]
        return LaunchTemplateRef("launch-template", name, _opt(spec.get("Version")))

    raise NotFound("launch template", f"of group {group.get('AutoScalingGroupName', '?')}")


def parse_group(group: Mapping[str, Any]) -> GroupDescriptor:
    instances = group.get("Instances", [])
    subnets = tuple(s.strip() for s in group.get("VPCZoneIdentifier", "").split(",") if s.strip())

    return GroupDescriptor(
        name=group["AutoScalingGroupName"],
        min_size=int(group["MinSize"]),
        max_size=int(group["MaxSize"]),
        desired_capacity=int(group["DesiredCapacity"]),
        launch_template_ref=parse_launch_template_ref(group),
        subnet_ids=subnets,
        member_instance_ids=tuple(i["InstanceId"] for i in instances),
        pending_instance_ids=tuple(
            i["InstanceId"]
            for i in instances
            if i.get("LifecycleState", "").startswith(PENDING_LIFECYCLE_PREFIX)
        ),
        placement_group=_opt(group.get("PlacementGroup")),
    )


def parse_launch_configuration(lc: Mapping[str, Any]) -> LaunchTemplate:
    return LaunchTemplate(
        image_id=lc["ImageId"],
        instance_type=lc["InstanceType"],
        key_name=_opt(lc.get("KeyName")),
        security_group_ids=tuple(lc.get("SecurityGroups", [])),
        ebs_optimized=bool(lc.get("EbsOptimized", False)),
        monitoring_enabled=bool(lc.get("InstanceMonitoring", {}).get("Enabled", False)),
        iam_instance_profile=_opt(lc.get("IamInstanceProfile")),
        kernel_id=_opt(lc.get("KernelId")),
        ramdisk_id=_opt(lc.get("RamdiskId")),
        user_data=_opt(lc.get("UserData")),
        placement_tenancy=_opt(lc.get("PlacementTenancy")),
        associate_public_ip=lc.get("AssociatePublicIpAddress"),
    )


def parse_launch_template_data(data: Mapping[str, Any]) -> LaunchTemplate:
    interfaces = data.get("NetworkInterfaces") or [{}]
    primary = interfaces[0]
    profile = data.get("IamInstanceProfile", {})

    return LaunchTemplate(
        image_id=data["ImageId"],
        instance_type=data.get("InstanceType", ""),
        key_name=_opt(data.get("KeyName")),
        security_group_ids=tuple(data.get("SecurityGroupIds") or primary.get("Groups", [])),
        ebs_optimized=bool(data.get("EbsOptimized", False)),
        monitoring_enabled=bool(data.get("Monitoring", {}).get("Enabled", False)),
        iam_instance_profile=_opt(profile.get("Arn") or profile.get("Name")),
        kernel_id=_opt(data.get("KernelId")),
        ramdisk_id=_opt(data.get("RamDiskId")),
        user_data=_opt(data.get("UserData")),
        placement_tenancy=_opt(data.get("Placement", {}).get("Tenancy")),
        associate_public_ip=primary.get("AssociatePublicIpAddress"),
    )


def _instances(response: Mapping[str, Any]) -> list[dict[str, Any]]:
    return [i for r in response.get("Reservations", []) for i in r.get("Instances", [])]


# =============================================================================
# Reader
# =============================================================================


class GroupStateReader:
    """Uncached reads of groups, launch settings, members and topology.

    Raises ``NotFound`` for an absent instance, group or template and
    ``UpstreamUnavailable`` for any other API failure.
    """

    def __init__(
        self,
        ec2: EC2ClientFactory,
        autoscaling: AutoScalingClientFactory,
        original_template_suffix: str = DEFAULT_ORIGINAL_TEMPLATE_SUFFIX,
    ) -> None:
        self.ec2 = ec2
        self.autoscaling = autoscaling
        self.original_template_suffix = original_template_suffix
        self._log = logger.bind(component="state")

    async def resolve_instance(self, instance_id: InstanceId) -> InstanceInfo:
        """Resolve an instance to its group, zone, type, subnet and profile."""
        async with self.autoscaling() as asg, translate_errors(
            "DescribeAutoScalingInstances", "instance", instance_id,
        ):
            resp = await asg.describe_auto_scaling_instances(InstanceIds=[instance_id])
        members = resp.get("AutoScalingInstances", [])
        if not members:
            raise NotFound("instance", instance_id)
        member = members[0]

        async with self.ec2() as ec2, translate_errors("DescribeInstances", "instance", instance_id):
            described = _instances(await ec2.describe_instances(InstanceIds=[instance_id]))
        if not described:
            raise NotFound("instance", instance_id)
        instance = described[0]

        info = InstanceInfo(
            id=instance_id,
            group_name=member["AutoScalingGroupName"],
            availability_zone=member["AvailabilityZone"],
            instance_type=instance["InstanceType"],
            subnet_id=instance.get("SubnetId", ""),
            instance_profile_arn=_opt(instance.get("IamInstanceProfile", {}).get("Arn")),
        )
        self._log.debug(
            f"{instance_id}: group={info.group_name} zone={info.availability_zone} "
            f"type={info.instance_type}"
        )
        return info

    async def read_group(self, name: str) -> GroupDescriptor:
        """Group sizing, topology and members, without launch settings."""
        async with self.autoscaling() as asg, translate_errors("DescribeAutoScalingGroups"):
            resp = await asg.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        groups = resp.get("AutoScalingGroups", [])
        if not groups:
            raise NotFound("group", name)
        return parse_group(groups[0])

    async def describe_group(self, name: str) -> tuple[GroupDescriptor, LaunchTemplate]:
        """Group sizing and topology together with its launch settings."""
        group = await self.read_group(name)
        template = await self.describe_launch_template(group.launch_template_ref)
        return group, template

    async def describe_launch_template(self, ref: LaunchTemplateRef) -> LaunchTemplate:
        """Read a launch configuration or EC2 launch template into ``LaunchTemplate``."""
        match ref.kind:
            case "launch-configuration":
                async with self.autoscaling() as asg, translate_errors("DescribeLaunchConfigurations"):
                    resp = await asg.describe_launch_configurations(LaunchConfigurationNames=[ref.name])
                configs = resp.get("LaunchConfigurations", [])
                if not configs:
                    raise NotFound("launch configuration", ref.name)
                return parse_launch_configuration(configs[0])

            case "launch-template":
                selector = (
                    {"LaunchTemplateId": ref.name}
                    if ref.name.startswith("lt-")
                    else {"LaunchTemplateName": ref.name}
                )
                async with self.ec2() as ec2, translate_errors(
                    "DescribeLaunchTemplateVersions", "launch template", ref.name,
                ):
                    resp = await ec2.describe_launch_template_versions(
                        **selector, Versions=[ref.version or "$Default"],
                    )
                versions = resp.get("LaunchTemplateVersions", [])
                if not versions:
                    raise NotFound("launch template", ref.name)
                return parse_launch_template_data(versions[0]["LaunchTemplateData"])

    async def list_group_members(self, name: str) -> list[InstanceId]:
        group = await self.read_group(name)
        return list(group.member_instance_ids)

    async def count_pending(self, name: str) -> int:
        """Members in a ``Pending*`` lifecycle state."""
        group = await self.read_group(name)
        return len(group.pending_instance_ids)

    async def pending_instances(self, name: str) -> tuple[InstanceId, ...]:
        group = await self.read_group(name)
        return group.pending_instance_ids

    async def subnets_per_zone(self, subnet_ids: Sequence[SubnetId]) -> dict[Zone, list[SubnetId]]:
        """Group subnets by availability zone, both sorted."""
        if not subnet_ids:
            return {}

        async with self.ec2() as ec2, translate_errors(
            "DescribeSubnets", "subnet", ",".join(subnet_ids),
        ):
            resp = await ec2.describe_subnets(SubnetIds=list(subnet_ids))

        by_zone: dict[Zone, list[SubnetId]] = defaultdict(list)
        for subnet in resp.get("Subnets", []):
            by_zone[subnet["AvailabilityZone"]].append(subnet["SubnetId"])
        return {zone: sorted(by_zone[zone]) for zone in sorted(by_zone)}

    async def find_base_instance_type(
        self,
        group: GroupDescriptor,
        template: LaunchTemplate | None = None,
    ) -> str:
        """Baseline type for recommendations.

        Prefers the preserved original template ``<group><suffix>`` (same
        kind as the group's current one), else the current template.
        """
        original = LaunchTemplateRef(
            group.launch_template_ref.kind,
            f"{group.name}{self.original_template_suffix}",
        )
        try:
            preserved = await self.describe_launch_template(original)
        except NotFound:
            if template is None:
                template = await self.describe_launch_template(group.launch_template_ref)
            return template.instance_type

        self._log.debug(f"{group.name}: using preserved template {original.name}")
        return preserved.instance_type

    async def describe_instance_type_state(
        self,
        group_name: str,
        instance_ids: Sequence[InstanceId],
    ) -> InstanceTypeState:
        """Bucket live members by (type, zone, spot bid price).

        Spot members are keyed by their request's launch specification type,
        launched zone and bid price; on-demand members get an empty price.
        """
        if not instance_ids:
            return InstanceTypeState()

        async with self.ec2() as ec2, translate_errors(
            "DescribeInstances", "instance", ",".join(instance_ids),
        ):
            instances = _instances(await ec2.describe_instances(InstanceIds=list(instance_ids)))

        buckets: dict[InstanceTypeKey, list[InstanceId]] = defaultdict(list)
        spot_members: dict[str, InstanceId] = {}

        for instance in instances:
            if request_id := instance.get("SpotInstanceRequestId"):
                spot_members[request_id] = instance["InstanceId"]
                continue
            key = InstanceTypeKey(instance["InstanceType"], instance["Placement"]["AvailabilityZone"])
            buckets[key].append(instance["InstanceId"])

        if spot_members:
            async with self.ec2() as ec2, translate_errors(
                "DescribeSpotInstanceRequests", "spot request", ",".join(spot_members),
            ):
                resp = await ec2.describe_spot_instance_requests(
                    SpotInstanceRequestIds=list(spot_members),
                )
            for request in resp.get("SpotInstanceRequests", []):
                key = InstanceTypeKey(
                    request["LaunchSpecification"]["InstanceType"],
                    request["LaunchedAvailabilityZone"],
                    request.get("SpotPrice", ""),
                )
                buckets[key].append(spot_members[request["SpotInstanceRequestId"]])

        state = InstanceTypeState.from_mapping(buckets)
        self._log.debug(
            f"{group_name}: {state.instance_count} members in {len(state)} buckets"
        )
        return state


__all__ = [
    "GroupStateReader",
    "parse_group",
    "parse_launch_configuration",
    "parse_launch_template_data",
    "parse_launch_template_ref",
]
