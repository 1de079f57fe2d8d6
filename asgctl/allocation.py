"""Proportional allocation of instance counts across zones, types and subnets.

Every split is integer division with the remainder added to the first
entry. Inputs are iterated in sorted order (zones and subnets) or in
selection order (types), so remainder placement is deterministic.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from asgctl.types import (
    AllocationCell,
    AllocationPlan,
    InstanceTypeRecommendation,
    SubnetId,
    Zone,
)


def split_evenly(total: int, parts: int) -> list[int]:
    """Split ``total`` into ``parts`` shares, remainder on the first share.

    >>> split_evenly(10, 3)
    [4, 3, 3]
    """
    if parts <= 0:
        return []
    if total < 0:
        raise ValueError(f"Cannot split a negative total: {total}")
    share, remainder = divmod(total, parts)
    return [share + remainder, *([share] * (parts - 1))]


def split_across_zones(total: int, zones: Sequence[Zone]) -> dict[Zone, int]:
    """Split ``total`` across zones in sorted order."""
    ordered = sorted(zones)
    return dict(zip(ordered, split_evenly(total, len(ordered)), strict=True))


def build_plan(
    counts_per_zone: Mapping[Zone, int],
    subnets_per_zone: Mapping[Zone, Sequence[SubnetId]],
    types_per_zone: Mapping[Zone, Sequence[InstanceTypeRecommendation]],
) -> AllocationPlan:
    """Build the (zone, type, subnet) allocation for the given per-zone counts.

    Each zone's count is split across its selected types (remainder to the
    first type), then each type's share across the zone's sorted subnets
    (remainder to the first subnet). Zero cells are dropped.

    Raises:
        ValueError: If a zone with a positive count has no subnets or no types.
    """
    cells: list[AllocationCell] = []

    for zone in sorted(counts_per_zone):
        count = counts_per_zone[zone]
        if count <= 0:
            continue

        types = list(types_per_zone.get(zone, ()))
        subnets = sorted(subnets_per_zone.get(zone, ()))
        if not types:
            raise ValueError(f"No instance types selected for zone {zone}")
        if not subnets:
            raise ValueError(f"No subnets available in zone {zone}")

        for rec, type_count in zip(types, split_evenly(count, len(types)), strict=True):
            for subnet, cell_count in zip(subnets, split_evenly(type_count, len(subnets)), strict=True):
                if cell_count > 0:
                    cells.append(AllocationCell(zone, rec, subnet, cell_count))

    return AllocationPlan(tuple(cells))


__all__ = [
    "build_plan",
    "split_across_zones",
    "split_evenly",
]
