"""Recommendation selection.

Pure functions that pick a prioritized subset of scored instance types.
More types are used only when the requested capacity is large enough for
diversification to pay off.

Example:
    >>> recs = [InstanceTypeRecommendation("m4.large", cost_score="12 points"),
    ...         InstanceTypeRecommendation("c5.large", cost_score="20 points")]
    >>> [r.type_name for r in select_recommendations(recs, 1)]
    ['c5.large']
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from asgctl.core import EmptyInput
from asgctl.types import InstanceTypeRecommendation

# (desired count below, distinct types below) -> prefix length
_THRESHOLDS: tuple[tuple[int, int, int], ...] = (
    (2, 2, 1),
    (9, 3, 2),
    (20, 4, 3),
)
_MAX_TYPES = 4


def _leading_float(score: str) -> float | None:
    head, _, _ = score.strip().partition(" ")
    try:
        value = float(head)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_cost_score(score: str) -> float:
    """Parse the leading float of a ``"<float> <unit>"`` score.

    Unparseable and non-finite scores (``nan``, ``inf``) count as 0.0.
    """
    value = _leading_float(score)
    return 0.0 if value is None else value


def _rank(recommendation: InstanceTypeRecommendation) -> tuple[bool, float]:
    value = _leading_float(recommendation.cost_score)
    return value is not None, 0.0 if value is None else value


def prefix_length(desired_count: int, available: int) -> int:
    """Number of instance types to use for ``desired_count`` instances."""
    for count_below, types_below, length in _THRESHOLDS:
        if desired_count < count_below or available < types_below:
            return length
    return _MAX_TYPES


def sort_by_cost_score(
    recommendations: Sequence[InstanceTypeRecommendation],
) -> list[InstanceTypeRecommendation]:
    """Stable sort by descending parsed cost score, unparseable scores last."""
    return sorted(recommendations, key=_rank, reverse=True)


def select_recommendations(
    recommendations: Sequence[InstanceTypeRecommendation],
    desired_count: int,
) -> list[InstanceTypeRecommendation]:
    """Return the best-scored prefix of ``recommendations`` for ``desired_count`` instances.

    Raises:
        EmptyInput: If ``recommendations`` is empty.
    """
    if not recommendations:
        raise EmptyInput("No instance type recommendations to select from")

    ranked = sort_by_cost_score(recommendations)
    return ranked[: prefix_length(desired_count, len(ranked))]


def select_cheapest(
    recommendations: Sequence[InstanceTypeRecommendation],
) -> InstanceTypeRecommendation:
    """Best-scored single recommendation."""
    return select_recommendations(recommendations, 1)[0]


__all__ = [
    "parse_cost_score",
    "prefix_length",
    "select_cheapest",
    "select_recommendations",
    "sort_by_cost_score",
]
