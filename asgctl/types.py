"""Immutable data model shared by the reader, provisioner and orchestrators.

Every snapshot here lives for a single orchestration run. The control
plane is the source of truth, so nothing is cached between runs.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

type InstanceId = str
type Zone = str
type SubnetId = str

type LaunchTemplateKind = Literal["launch-configuration", "launch-template"]


# =============================================================================
# Instances and Groups
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceInfo:
    """A live group member as seen by the control plane."""

    id: InstanceId
    group_name: str
    availability_zone: Zone
    instance_type: str
    subnet_id: SubnetId
    instance_profile_arn: str | None = None


@dataclass(frozen=True, slots=True)
class LaunchTemplateRef:
    """Pointer to the launch configuration or launch template of a group."""

    kind: LaunchTemplateKind
    name: str
    version: str | None = None


@dataclass(frozen=True, slots=True)
class GroupDescriptor:
    """Sizing and topology of an Auto Scaling group."""

    name: str
    min_size: int
    max_size: int
    desired_capacity: int
    launch_template_ref: LaunchTemplateRef
    subnet_ids: tuple[SubnetId, ...]
    member_instance_ids: tuple[InstanceId, ...] = ()
    pending_instance_ids: tuple[InstanceId, ...] = ()
    placement_group: str | None = None


@dataclass(frozen=True, slots=True)
class LaunchTemplate:
    """Launch settings copied into every provisioning request for a group."""

    image_id: str
    instance_type: str
    key_name: str | None = None
    security_group_ids: tuple[str, ...] = ()
    ebs_optimized: bool = False
    monitoring_enabled: bool = False
    iam_instance_profile: str | None = None
    kernel_id: str | None = None
    ramdisk_id: str | None = None
    user_data: str | None = None
    placement_tenancy: str | None = None
    associate_public_ip: bool | None = None


@dataclass(frozen=True, slots=True)
class Placement:
    """Placement group and tenancy applied to spot requests."""

    group_name: str | None = None
    tenancy: str | None = None

    def __bool__(self) -> bool:
        return bool(self.group_name or self.tenancy)


# =============================================================================
# Recommendations
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceTypeRecommendation:
    """One scored instance type in one availability zone."""

    type_name: str
    current_price: str = ""
    avg_price_24h: str = ""
    on_demand_price: str = ""
    suggested_bid_price: str = ""
    cost_score: str = ""
    stability_score: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InstanceTypeRecommendation:
        """Deserialize from the recommender's JSON representation."""
        return cls(
            type_name=str(data["InstanceTypeName"]),
            current_price=str(data.get("CurrentPrice", "")),
            avg_price_24h=str(data.get("AvgPriceFor24Hours", "")),
            on_demand_price=str(data.get("OnDemandPrice", "")),
            suggested_bid_price=str(data.get("SuggestedBidPrice", "")),
            cost_score=str(data.get("CostScore", "")),
            stability_score=str(data.get("StabilityScore", "")),
        )

    def to_dict(self) -> dict[str, str]:
        """Serialize to the recommender's JSON representation."""
        return {
            "InstanceTypeName": self.type_name,
            "CurrentPrice": self.current_price,
            "AvgPriceFor24Hours": self.avg_price_24h,
            "OnDemandPrice": self.on_demand_price,
            "SuggestedBidPrice": self.suggested_bid_price,
            "CostScore": self.cost_score,
            "StabilityScore": self.stability_score,
        }


type Recommendations = Mapping[Zone, list[InstanceTypeRecommendation]]


# =============================================================================
# Allocation
# =============================================================================


@dataclass(frozen=True, slots=True)
class AllocationCell:
    """A (zone, instance type, subnet) combination with its instance count."""

    availability_zone: Zone
    recommendation: InstanceTypeRecommendation
    subnet_id: SubnetId
    count: int

    @property
    def instance_type(self) -> str:
        return self.recommendation.type_name

    @property
    def key(self) -> tuple[Zone, str, SubnetId]:
        return (self.availability_zone, self.instance_type, self.subnet_id)


@dataclass(frozen=True, slots=True)
class AllocationPlan:
    """Ordered set of non-empty allocation cells."""

    cells: tuple[AllocationCell, ...] = ()

    def __iter__(self) -> Iterator[AllocationCell]:
        return iter(self.cells)

    def __len__(self) -> int:
        return len(self.cells)

    @property
    def total(self) -> int:
        return sum(c.count for c in self.cells)

    def total_for_zone(self, zone: Zone) -> int:
        return sum(c.count for c in self.cells if c.availability_zone == zone)

    def counts(self) -> dict[tuple[Zone, str, SubnetId], int]:
        """Cell key to count mapping."""
        return {c.key: c.count for c in self.cells}


# =============================================================================
# Composition (rebalancing)
# =============================================================================


@dataclass(frozen=True, slots=True, order=True)
class InstanceTypeKey:
    """Bucket key; an empty bid price marks on-demand members."""

    instance_type: str
    availability_zone: Zone
    spot_bid_price: str = ""

    @property
    def is_spot(self) -> bool:
        return self.spot_bid_price != ""


@dataclass(frozen=True, slots=True)
class InstanceTypeState:
    """A group's live members grouped into composition buckets."""

    buckets: MappingProxyType[InstanceTypeKey, tuple[InstanceId, ...]] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @classmethod
    def from_mapping(cls, buckets: Mapping[InstanceTypeKey, list[InstanceId]]) -> InstanceTypeState:
        return cls(MappingProxyType({k: tuple(v) for k, v in buckets.items()}))

    def __len__(self) -> int:
        return len(self.buckets)

    def items(self) -> list[tuple[InstanceTypeKey, tuple[InstanceId, ...]]]:
        """Buckets in deterministic key order."""
        return sorted(self.buckets.items())

    @property
    def instance_count(self) -> int:
        return sum(len(ids) for ids in self.buckets.values())


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Inbound capacity event."""

    event_type: str
    data: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> AlertEvent:
        event_type = raw.get("event_type", raw.get("EventType"))
        data = raw.get("data", raw.get("Data")) or {}
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("event_type must be a non-empty string")
        if not isinstance(data, Mapping):
            raise ValueError("data must be an object")
        return cls(event_type=event_type, data={str(k): str(v) for k, v in data.items()})


type ActionStatus = Literal["ok", "ignored"]


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Acknowledgment returned for a handled event."""

    status: ActionStatus
    event_type: str
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        result = {"status": self.status, "event_type": self.event_type}
        if self.detail:
            result["detail"] = self.detail
        return result
