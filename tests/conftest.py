from __future__ import annotations

import itertools
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import pytest
from botocore.exceptions import ClientError

from asgctl.orchestration.initializer import FleetInitializer
from asgctl.orchestration.locks import GroupLocks
from asgctl.orchestration.rebalancer import FleetRebalancer
from asgctl.orchestration.swap import SwapOrchestrator
from asgctl.polling import PollingPolicy
from asgctl.providers.aws.clients import AutoScalingClientFactory, EC2ClientFactory
from asgctl.providers.aws.membership import GroupMembership
from asgctl.providers.aws.provisioner import FleetProvisioner
from asgctl.providers.aws.state import GroupStateReader
from asgctl.router import EventRouter
from asgctl.types import InstanceTypeRecommendation

FAST = PollingPolicy(interval=0, timeout=5)


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


def rec(type_name: str, cost_score: str = "1", on_demand_price: str = "0.1") -> InstanceTypeRecommendation:
    return InstanceTypeRecommendation(
        type_name=type_name,
        on_demand_price=on_demand_price,
        cost_score=cost_score,
        stability_score="1",
    )


# =============================================================================
# In-memory control plane
# =============================================================================


class FakeAWS:
    """Minimal stateful model of the Auto Scaling and EC2 APIs.

    Spot requests are fulfilled after ``fulfill_after`` describe polls and
    instances turn running after ``running_after`` status polls.
    """

    def __init__(self) -> None:
        self.groups: dict[str, dict[str, Any]] = {}
        self.members: dict[str, list[str]] = {}
        self.launch_configs: dict[str, dict[str, Any]] = {}
        self.launch_templates: dict[str, dict[str, Any]] = {}
        self.instances: dict[str, dict[str, Any]] = {}
        self.subnets: dict[str, str] = {}
        self.spot_requests: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, list[Exception | None]] = {}
        self.fulfill_after = 1
        self.running_after = 1
        self.spot_outcome = "active"
        self.instance_outcome = "running"
        self.pending_polls: dict[str, int] = {}
        self._ids = itertools.count(1)

    # ─── Setup ───────────────────────────────────────────────────────

    def add_subnet(self, subnet_id: str, zone: str) -> None:
        self.subnets[subnet_id] = zone

    def add_launch_configuration(self, name: str, instance_type: str = "m4.large", **extra: Any) -> None:
        self.launch_configs[name] = {
            "LaunchConfigurationName": name,
            "ImageId": "ami-123",
            "InstanceType": instance_type,
            "KeyName": "ops",
            "SecurityGroups": ["sg-1"],
            "EbsOptimized": False,
            "InstanceMonitoring": {"Enabled": True},
            "IamInstanceProfile": "web-profile",
            "KernelId": "",
            "RamdiskId": "",
            "UserData": "",
            **extra,
        }

    def add_instance(
        self,
        instance_id: str,
        instance_type: str,
        zone: str,
        subnet_id: str,
        *,
        spot_price: str | None = None,
        profile_arn: str | None = None,
    ) -> None:
        instance: dict[str, Any] = {
            "InstanceId": instance_id,
            "InstanceType": instance_type,
            "SubnetId": subnet_id,
            "Placement": {"AvailabilityZone": zone},
            "State": {"Name": "running"},
        }
        if profile_arn:
            instance["IamInstanceProfile"] = {"Arn": profile_arn}
        if spot_price is not None:
            rid = f"sir-old-{instance_id}"
            instance["SpotInstanceRequestId"] = rid
            instance["InstanceLifecycle"] = "spot"
            self.spot_requests[rid] = {
                "SpotInstanceRequestId": rid,
                "State": "active",
                "SpotPrice": spot_price,
                "InstanceId": instance_id,
                "LaunchedAvailabilityZone": zone,
                "LaunchSpecification": {"InstanceType": instance_type, "SubnetId": subnet_id},
                "_polls": 0,
            }
        self.instances[instance_id] = instance

    def add_group(
        self,
        name: str,
        *,
        min_size: int,
        desired: int,
        max_size: int = 50,
        launch_configuration: str | None = None,
        subnets: Sequence[str] = (),
        members: Sequence[str] = (),
        placement_group: str | None = None,
    ) -> None:
        lc = launch_configuration or f"{name}-lc"
        if lc not in self.launch_configs:
            self.add_launch_configuration(lc)
        self.groups[name] = {
            "AutoScalingGroupName": name,
            "MinSize": min_size,
            "MaxSize": max_size,
            "DesiredCapacity": desired,
            "LaunchConfigurationName": lc,
            "VPCZoneIdentifier": ",".join(subnets),
            **({"PlacementGroup": placement_group} if placement_group else {}),
        }
        self.members[name] = list(members)

    def fail(self, operation: str, error: Exception, times: int = 1, *, after: int = 0) -> None:
        """Raise ``error`` on the next ``times`` calls, letting ``after`` calls through first."""
        self.failures.setdefault(operation, []).extend([None] * after + [error] * times)

    # ─── Inspection ──────────────────────────────────────────────────

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def group(self, name: str) -> dict[str, Any]:
        return self.groups[name]

    def min_size_history(self, name: str) -> list[int]:
        return [
            c["MinSize"] for c in self.calls_to("update_auto_scaling_group")
            if c["AutoScalingGroupName"] == name and "MinSize" in c
        ]

    # ─── Plumbing ────────────────────────────────────────────────────

    def record(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        pending = self.failures.get(operation)
        if pending and (error := pending.pop(0)) is not None:
            raise error

    def group_of(self, instance_id: str) -> str | None:
        for name, ids in self.members.items():
            if instance_id in ids:
                return name
        return None

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):04d}"


class FakeAutoScalingClient:
    def __init__(self, aws: FakeAWS) -> None:
        self.aws = aws

    async def describe_auto_scaling_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_auto_scaling_instances", kw)
        result = []
        for iid in kw["InstanceIds"]:
            group = self.aws.group_of(iid)
            if group is None:
                continue
            result.append({
                "InstanceId": iid,
                "AutoScalingGroupName": group,
                "AvailabilityZone": self.aws.instances[iid]["Placement"]["AvailabilityZone"],
                "LifecycleState": "InService",
            })
        return {"AutoScalingInstances": result}

    async def describe_auto_scaling_groups(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_auto_scaling_groups", kw)
        result = []
        for name in kw["AutoScalingGroupNames"]:
            if name not in self.aws.groups:
                continue
            pending = self.aws.pending_polls.get(name, 0)
            if pending:
                self.aws.pending_polls[name] = pending - 1
            instances = [
                {
                    "InstanceId": iid,
                    "LifecycleState": "Pending:Wait" if pending and i == 0 else "InService",
                }
                for i, iid in enumerate(self.aws.members[name])
            ]
            result.append({**self.aws.groups[name], "Instances": instances})
        return {"AutoScalingGroups": result}

    async def describe_launch_configurations(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_launch_configurations", kw)
        return {
            "LaunchConfigurations": [
                self.aws.launch_configs[n] for n in kw["LaunchConfigurationNames"]
                if n in self.aws.launch_configs
            ]
        }

    async def update_auto_scaling_group(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("update_auto_scaling_group", kw)
        group = self.aws.groups[kw["AutoScalingGroupName"]]
        for key in ("MinSize", "MaxSize", "DesiredCapacity"):
            if key in kw:
                group[key] = kw[key]
        if "DesiredCapacity" not in kw:
            group["DesiredCapacity"] = min(max(group["DesiredCapacity"], group["MinSize"]), group["MaxSize"])
        return {}

    async def attach_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("attach_instances", kw)
        name = kw["AutoScalingGroupName"]
        group = self.aws.groups[name]
        ids = kw["InstanceIds"]
        if group["DesiredCapacity"] + len(ids) > group["MaxSize"]:
            raise client_error("ValidationError", "AttachInstances", "max size exceeded")
        self.aws.members[name].extend(ids)
        group["DesiredCapacity"] += len(ids)
        return {}

    async def detach_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("detach_instances", kw)
        name = kw["AutoScalingGroupName"]
        group = self.aws.groups[name]
        ids = kw["InstanceIds"]
        if any(i not in self.aws.members[name] for i in ids):
            raise client_error("ValidationError", "DetachInstances", "instance not in group")
        if kw["ShouldDecrementDesiredCapacity"]:
            if group["DesiredCapacity"] - len(ids) < group["MinSize"]:
                raise client_error("ValidationError", "DetachInstances", "below min size")
            group["DesiredCapacity"] -= len(ids)
        for i in ids:
            self.aws.members[name].remove(i)
        return {"Activities": []}


class FakeEC2Client:
    def __init__(self, aws: FakeAWS) -> None:
        self.aws = aws

    async def describe_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_instances", kw)
        missing = [i for i in kw["InstanceIds"] if i not in self.aws.instances]
        if missing:
            raise client_error("InvalidInstanceID.NotFound", "DescribeInstances")
        return {"Reservations": [{"Instances": [self.aws.instances[i] for i in kw["InstanceIds"]]}]}

    async def describe_subnets(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_subnets", kw)
        return {
            "Subnets": [
                {"SubnetId": s, "AvailabilityZone": self.aws.subnets[s]}
                for s in kw["SubnetIds"]
                if s in self.aws.subnets
            ]
        }

    async def describe_launch_template_versions(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_launch_template_versions", kw)
        name = kw.get("LaunchTemplateName") or kw.get("LaunchTemplateId")
        if name not in self.aws.launch_templates:
            raise client_error(
                "InvalidLaunchTemplateName.NotFoundException", "DescribeLaunchTemplateVersions",
            )
        return {"LaunchTemplateVersions": [{"LaunchTemplateData": self.aws.launch_templates[name]}]}

    async def request_spot_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("request_spot_instances", kw)
        requests = []
        for _ in range(kw["InstanceCount"]):
            rid = self.aws.next_id("sir")
            self.aws.spot_requests[rid] = {
                "SpotInstanceRequestId": rid,
                "State": "open",
                "SpotPrice": kw.get("SpotPrice", ""),
                "LaunchSpecification": kw["LaunchSpecification"],
                "_polls": 0,
            }
            requests.append({"SpotInstanceRequestId": rid, "State": "open"})
        return {"SpotInstanceRequests": requests}

    def _fulfill(self, request: dict[str, Any]) -> None:
        spec = request["LaunchSpecification"]
        subnet = spec["NetworkInterfaces"][0]["SubnetId"]
        iid = self.aws.next_id("i-new")
        self.aws.instances[iid] = {
            "InstanceId": iid,
            "InstanceType": spec["InstanceType"],
            "SubnetId": subnet,
            "Placement": {"AvailabilityZone": self.aws.subnets[subnet]},
            "State": {"Name": "pending"},
            "SpotInstanceRequestId": request["SpotInstanceRequestId"],
            "_polls": 0,
        }
        request.update(
            State="active", InstanceId=iid, LaunchedAvailabilityZone=self.aws.subnets[subnet],
        )

    async def describe_spot_instance_requests(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_spot_instance_requests", kw)
        result = []
        for rid in kw["SpotInstanceRequestIds"]:
            request = self.aws.spot_requests[rid]
            if request["State"] == "open":
                request["_polls"] += 1
                if request["_polls"] >= self.aws.fulfill_after:
                    if self.aws.spot_outcome == "active":
                        self._fulfill(request)
                    else:
                        request["State"] = self.aws.spot_outcome
                        request["Status"] = {"Code": "bad-parameters", "Message": "capacity-not-available"}
            result.append({k: v for k, v in request.items() if not k.startswith("_")})
        return {"SpotInstanceRequests": result}

    async def describe_instance_status(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("describe_instance_status", kw)
        statuses = []
        for iid in kw["InstanceIds"]:
            instance = self.aws.instances[iid]
            if instance["State"]["Name"] == "pending":
                instance["_polls"] = instance.get("_polls", 0) + 1
                if instance["_polls"] >= self.aws.running_after:
                    instance["State"] = {"Name": self.aws.instance_outcome}
            statuses.append({"InstanceId": iid, "InstanceState": dict(instance["State"])})
        return {"InstanceStatuses": statuses}

    async def terminate_instances(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("terminate_instances", kw)
        for iid in kw["InstanceIds"]:
            if iid in self.aws.instances:
                self.aws.instances[iid]["State"] = {"Name": "shutting-down"}
        return {"TerminatingInstances": [{"InstanceId": i} for i in kw["InstanceIds"]]}

    async def cancel_spot_instance_requests(self, **kw: Any) -> dict[str, Any]:
        self.aws.record("cancel_spot_instance_requests", kw)
        for rid in kw["SpotInstanceRequestIds"]:
            if self.aws.spot_requests[rid]["State"] == "open":
                self.aws.spot_requests[rid]["State"] = "cancelled"
        return {"CancelledSpotInstanceRequests": []}


def _factory(client: Any):
    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        yield client
    return factory


class FakeRecommender:
    def __init__(self, recommendations: dict[str, list[InstanceTypeRecommendation]] | None = None) -> None:
        self.recommendations = recommendations or {}
        self.calls: list[tuple[list[str], str]] = []

    async def recommend(self, zones: Sequence[str], base_instance_type: str) -> dict[str, list[InstanceTypeRecommendation]]:
        self.calls.append((list(zones), base_instance_type))
        return {z: list(self.recommendations.get(z, [])) for z in zones}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def aws() -> FakeAWS:
    return FakeAWS()


@pytest.fixture
def ec2(aws: FakeAWS) -> EC2ClientFactory:
    return EC2ClientFactory(_factory(FakeEC2Client(aws)))


@pytest.fixture
def autoscaling(aws: FakeAWS) -> AutoScalingClientFactory:
    return AutoScalingClientFactory(_factory(FakeAutoScalingClient(aws)))


@pytest.fixture
def reader(ec2: EC2ClientFactory, autoscaling: AutoScalingClientFactory) -> GroupStateReader:
    return GroupStateReader(ec2, autoscaling)


@pytest.fixture
def membership(
    ec2: EC2ClientFactory,
    autoscaling: AutoScalingClientFactory,
    reader: GroupStateReader,
) -> GroupMembership:
    return GroupMembership(ec2, autoscaling, reader)


@pytest.fixture
def provisioner(ec2: EC2ClientFactory, membership: GroupMembership) -> FleetProvisioner:
    return FleetProvisioner(ec2, membership, FAST, FAST)


@pytest.fixture
def recommender() -> FakeRecommender:
    return FakeRecommender()


@pytest.fixture
def locks() -> GroupLocks:
    return GroupLocks()


@pytest.fixture
def swapper(reader, membership, provisioner, recommender, locks) -> SwapOrchestrator:
    return SwapOrchestrator(reader, membership, provisioner, recommender, locks)


@pytest.fixture
def initializer(reader, membership, provisioner, recommender, locks) -> FleetInitializer:
    return FleetInitializer(reader, membership, provisioner, recommender, locks, FAST)


@pytest.fixture
def rebalancer(reader, membership, provisioner, recommender, locks) -> FleetRebalancer:
    return FleetRebalancer(reader, membership, provisioner, recommender, locks, FAST)


@pytest.fixture
def router(swapper, initializer, rebalancer) -> EventRouter:
    return EventRouter(swapper, initializer, rebalancer)
