"""Client for the instance type recommendation service.

The service scores spot instance types per availability zone relative to
a baseline type:

    GET /api/v1/recommender/{region}?baseInstanceType=m4.large&availabilityZones=a,b
    -> {"status": 200, "data": {"eu-west-1a": [{"InstanceTypeName": ...}, ...]}}
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from asgctl.core import UpstreamUnavailable
from asgctl.infra.http import HttpClient, HttpError
from asgctl.types import InstanceTypeRecommendation, Zone


@runtime_checkable
class Recommender(Protocol):
    async def recommend(
        self,
        zones: Sequence[Zone],
        base_instance_type: str,
    ) -> dict[Zone, list[InstanceTypeRecommendation]]: ...


def parse_recommendations(payload: Any) -> dict[Zone, list[InstanceTypeRecommendation]]:
    """Parse the ``data`` object of a recommender response.

    Raises:
        ValueError: If the payload does not have the expected shape.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"expected an object, got {type(payload).__name__}")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ValueError("response has no 'data' object")

    result: dict[Zone, list[InstanceTypeRecommendation]] = {}
    for zone, recs in data.items():
        if not isinstance(recs, list):
            raise ValueError(f"recommendations for {zone} are not a list")
        try:
            result[zone] = [InstanceTypeRecommendation.from_dict(r) for r in recs]
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"malformed recommendation for {zone}: {e}") from e
    return result


class RecommenderClient:
    """HTTP implementation of ``Recommender``."""

    def __init__(self, http: HttpClient, region: str) -> None:
        self.http = http
        self.region = region
        self._log = logger.bind(component="recommender")

    async def recommend(
        self,
        zones: Sequence[Zone],
        base_instance_type: str,
    ) -> dict[Zone, list[InstanceTypeRecommendation]]:
        """Recommendations per zone for ``zones``, relative to ``base_instance_type``.

        Raises:
            UpstreamUnavailable: On transport failure, error status or malformed body.
        """
        params = {
            "baseInstanceType": base_instance_type,
            "availabilityZones": ",".join(zones),
        }
        try:
            resp = await self.http.get(
                f"/api/v1/recommender/{self.region}", params=params, response_type=dict,
            )
            recommendations = parse_recommendations(resp.data)
        except HttpError as e:
            raise UpstreamUnavailable("recommend", str(e)) from e
        except ValueError as e:
            raise UpstreamUnavailable("recommend", f"malformed response: {e}") from e

        self._log.debug(
            f"Recommendations for {base_instance_type} in {', '.join(zones)}: "
            + "; ".join(f"{z}=[{', '.join(r.type_name for r in recs)}]" for z, recs in recommendations.items())
        )
        return recommendations

    async def close(self) -> None:
        await self.http.close()


__all__ = [
    "Recommender",
    "RecommenderClient",
    "parse_recommendations",
]
