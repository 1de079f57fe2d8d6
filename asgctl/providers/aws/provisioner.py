"""Bulk Fleet Provisioner.

Requests spot capacity for every cell of an allocation plan, then blocks
on two bounded barriers: every request has an instance id, and every
instance is running. Partial fulfillment while waiting is normal.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from botocore.exceptions import ClientError
from loguru import logger

from asgctl.allocation import build_plan
from asgctl.constants import SPOT_REQUEST_TERMINAL_STATES, InstanceState
from asgctl.core import ProvisioningFailed
from asgctl.polling import NotReady, PollingPolicy, wait_until
from asgctl.types import (
    AllocationCell,
    AllocationPlan,
    InstanceId,
    InstanceTypeRecommendation,
    LaunchTemplate,
    Placement,
    SubnetId,
    Zone,
)

from .clients import EC2ClientFactory
from .errors import is_not_found, translate_errors
from .membership import GroupMembership

_FAILED_INSTANCE_STATES = frozenset({
    InstanceState.SHUTTING_DOWN,
    InstanceState.TERMINATED,
    InstanceState.STOPPING,
    InstanceState.STOPPED,
})


# =============================================================================
# Launch Specification
# =============================================================================


def instance_profile_spec(profile: str) -> dict[str, str]:
    """Launch configurations store either a profile name or an ARN."""
    return {"Arn": profile} if profile.startswith("arn:") else {"Name": profile}


def build_launch_specification(
    template: LaunchTemplate,
    instance_type: str,
    subnet_id: SubnetId,
    *,
    placement: Placement | None = None,
    instance_profile_arn: str | None = None,
) -> dict[str, Any]:
    """Spot launch specification derived from a group's launch settings."""
    interface: dict[str, Any] = {
        "DeviceIndex": 0,
        "SubnetId": subnet_id,
        "Groups": list(template.security_group_ids),
    }
    if template.associate_public_ip is not None:
        interface["AssociatePublicIpAddress"] = template.associate_public_ip

    spec: dict[str, Any] = {
        "ImageId": template.image_id,
        "InstanceType": instance_type,
        "EbsOptimized": template.ebs_optimized,
        "Monitoring": {"Enabled": template.monitoring_enabled},
        "NetworkInterfaces": [interface],
    }

    if template.key_name:
        spec["KeyName"] = template.key_name
    if instance_profile_arn:
        spec["IamInstanceProfile"] = {"Arn": instance_profile_arn}
    elif template.iam_instance_profile:
        spec["IamInstanceProfile"] = instance_profile_spec(template.iam_instance_profile)
    if template.kernel_id:
        spec["KernelId"] = template.kernel_id
    if template.ramdisk_id:
        spec["RamdiskId"] = template.ramdisk_id
    if template.user_data:
        spec["UserData"] = template.user_data

    tenancy = (placement.tenancy if placement else None) or template.placement_tenancy
    group_name = placement.group_name if placement else None
    if group_name or tenancy:
        spec["Placement"] = {
            **({"GroupName": group_name} if group_name else {}),
            **({"Tenancy": tenancy} if tenancy else {}),
        }

    return spec


# =============================================================================
# Provisioner
# =============================================================================


class FleetProvisioner:
    """Turns an allocation plan into running spot instances."""

    def __init__(
        self,
        ec2: EC2ClientFactory,
        membership: GroupMembership,
        spot_request_policy: PollingPolicy | None = None,
        instance_running_policy: PollingPolicy | None = None,
    ) -> None:
        self.ec2 = ec2
        self.membership = membership
        self.spot_request_policy = spot_request_policy or PollingPolicy()
        self.instance_running_policy = instance_running_policy or PollingPolicy()
        self._log = logger.bind(component="provisioner")

    async def provision(
        self,
        counts_per_zone: Mapping[Zone, int],
        subnets_per_zone: Mapping[Zone, Sequence[SubnetId]],
        types_per_zone: Mapping[Zone, Sequence[InstanceTypeRecommendation]],
        template: LaunchTemplate,
        *,
        placement: Placement | None = None,
        instance_profile_arn: str | None = None,
    ) -> list[InstanceId]:
        """Provision ``counts_per_zone`` instances and return their ids once running.

        Raises:
            ProvisioningTimeout: If either barrier exceeds its deadline.
            ProvisioningFailed: If a request fails or closes without an instance.
            UpstreamUnavailable: On EC2 API failure.
        """
        plan = build_plan(counts_per_zone, subnets_per_zone, types_per_zone)
        return await self.provision_plan(
            plan, template, placement=placement, instance_profile_arn=instance_profile_arn,
        )

    async def provision_plan(
        self,
        plan: AllocationPlan,
        template: LaunchTemplate,
        *,
        placement: Placement | None = None,
        instance_profile_arn: str | None = None,
    ) -> list[InstanceId]:
        if not plan:
            return []

        self._log.info(
            f"Provisioning {plan.total} instances in {len(plan)} cells: "
            + ", ".join(f"{c.availability_zone}/{c.instance_type}/{c.subnet_id}={c.count}" for c in plan)
        )

        request_ids: list[str] = []
        assigned: dict[str, InstanceId] = {}
        try:
            for cell in plan:
                request_ids.extend(await self._request(cell, template, placement, instance_profile_arn))

            instance_ids = await self._wait_fulfilled(request_ids, assigned)
            await self._wait_running(instance_ids, assigned)
        except BaseException as e:
            self._log.warning(f"Provisioning failed ({type(e).__name__}: {e}), cleaning up")
            await self._rollback(request_ids, assigned)
            raise

        self._log.info(f"Provisioned {', '.join(instance_ids)}")
        return instance_ids

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def _request(
        self,
        cell: AllocationCell,
        template: LaunchTemplate,
        placement: Placement | None,
        instance_profile_arn: str | None,
    ) -> list[str]:
        params: dict[str, Any] = {
            "InstanceCount": cell.count,
            "LaunchSpecification": build_launch_specification(
                template,
                cell.instance_type,
                cell.subnet_id,
                placement=placement,
                instance_profile_arn=instance_profile_arn,
            ),
        }
        if bid := cell.recommendation.on_demand_price:
            params["SpotPrice"] = bid

        async with self.ec2() as ec2, translate_errors("RequestSpotInstances"):
            resp = await ec2.request_spot_instances(**params)

        ids = [r["SpotInstanceRequestId"] for r in resp.get("SpotInstanceRequests", [])]
        self._log.debug(
            f"Requested {cell.count}x {cell.instance_type} in {cell.subnet_id} "
            f"(bid {bid or 'on-demand'}): {', '.join(ids)}"
        )
        return ids

    async def _describe_requests(self, request_ids: Sequence[str]) -> list[dict[str, Any]]:
        async with self.ec2() as ec2:
            try:
                resp = await ec2.describe_spot_instance_requests(SpotInstanceRequestIds=list(request_ids))
            except ClientError as e:
                # Freshly created requests may not be visible yet
                if is_not_found(e):
                    raise NotReady(request_ids) from e
                raise
        return resp.get("SpotInstanceRequests", [])

    async def _wait_fulfilled(
        self,
        request_ids: Sequence[str],
        assigned: dict[str, InstanceId],
    ) -> list[InstanceId]:
        async def check() -> list[InstanceId]:
            async with translate_errors("DescribeSpotInstanceRequests"):
                requests = await self._describe_requests(request_ids)

            for request in requests:
                rid = request["SpotInstanceRequestId"]
                if instance_id := request.get("InstanceId"):
                    assigned[rid] = instance_id
                elif request.get("State") in SPOT_REQUEST_TERMINAL_STATES:
                    status = request.get("Status", {})
                    raise ProvisioningFailed(
                        rid, request["State"], status.get("Message") or status.get("Code", ""),
                    )

            pending = [rid for rid in request_ids if rid not in assigned]
            if pending:
                raise NotReady(pending)
            return [assigned[rid] for rid in request_ids]

        return await wait_until(check, self.spot_request_policy, "spot requests to be fulfilled")

    async def _wait_running(
        self,
        instance_ids: Sequence[InstanceId],
        assigned: Mapping[str, InstanceId],
    ) -> None:
        request_of = {iid: rid for rid, iid in assigned.items()}

        async def check() -> None:
            async with self.ec2() as ec2, translate_errors("DescribeInstanceStatus"):
                try:
                    resp = await ec2.describe_instance_status(
                        InstanceIds=list(instance_ids), IncludeAllInstances=True,
                    )
                except ClientError as e:
                    if is_not_found(e):
                        raise NotReady(instance_ids) from e
                    raise

            states = {s["InstanceId"]: s["InstanceState"]["Name"] for s in resp.get("InstanceStatuses", [])}
            for iid, state in states.items():
                if state in _FAILED_INSTANCE_STATES:
                    raise ProvisioningFailed(request_of.get(iid, iid), state, f"instance {iid} is {state}")

            pending = [iid for iid in instance_ids if states.get(iid) != InstanceState.RUNNING]
            if pending:
                raise NotReady(pending)

        await wait_until(check, self.instance_running_policy, "instances to be running")

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    async def _rollback(self, request_ids: Sequence[str], assigned: dict[str, InstanceId]) -> None:
        """Cancel outstanding requests and terminate instances they produced."""
        if not request_ids:
            return

        try:
            await self.membership.cancel_spot_requests(request_ids)
        except Exception as e:
            self._log.error(f"Failed to cancel spot requests {', '.join(request_ids)}: {e}")

        # Requests fulfilled between the last poll and cancellation
        try:
            for request in await self._describe_requests(request_ids):
                if instance_id := request.get("InstanceId"):
                    assigned[request["SpotInstanceRequestId"]] = instance_id
        except Exception as e:
            self._log.warning(f"Could not re-check spot requests after cancellation: {e}")

        orphans = sorted(set(assigned.values()))
        if not orphans:
            return
        try:
            await self.membership.terminate(orphans)
        except Exception as e:
            self._log.error(f"Failed to terminate orphaned instances {', '.join(orphans)}: {e}")


__all__ = [
    "FleetProvisioner",
    "build_launch_specification",
    "instance_profile_spec",
]
