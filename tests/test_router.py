from __future__ import annotations

from typing import Any

import pytest

from asgctl.constants import EventType
from asgctl.core import InvalidEvent, NotFound
from asgctl.router import EventRouter, require
from asgctl.types import ActionResult, AlertEvent, InstanceTypeKey, InstanceTypeRecommendation

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class Recorder:
    """Stands in for every orchestrator and records what the router asked for."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None

    def _record(self, name: str, arg: str) -> None:
        self.calls.append((name, arg))
        if self.error is not None:
            raise self.error

    async def swap(self, instance_id: str) -> str:
        self._record("swap", instance_id)
        return "i-new"

    async def swap_and_terminate(self, instance_id: str) -> str:
        self._record("swap_and_terminate", instance_id)
        return "i-new"

    async def initialize(self, group: str) -> list[str]:
        self._record("initialize", group)
        return ["i-a", "i-b"]

    async def rebalance(self, group: str) -> dict[Any, list[str]]:
        self._record("rebalance", group)
        return {InstanceTypeKey("m4.large", "eu-west-1a", "0.1"): ["i-c"]}


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def stub_router(recorder: Recorder) -> EventRouter:
    return EventRouter(recorder, recorder, recorder)  # type: ignore[arg-type]


class TestRequire:
    def test_present(self):
        assert require(AlertEvent("x", {"asg_name": "web"}), "asg_name") == "web"

    def test_missing(self):
        with pytest.raises(InvalidEvent, match="asg_name"):
            require(AlertEvent("x", {}), "asg_name")

    def test_empty(self):
        with pytest.raises(InvalidEvent):
            require(AlertEvent("x", {"instance_id": ""}), "instance_id")


class TestRoute:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("event_type", "data", "expected"),
        [
            (EventType.SPOT_TERMINATION_NOTICE, {"instance_id": "i-1"}, ("swap", "i-1")),
            (EventType.SPOT_TOO_EXPENSIVE, {"instance_id": "i-1"}, ("swap_and_terminate", "i-1")),
            (EventType.INITIALIZING, {"asg_name": "web"}, ("initialize", "web")),
            (EventType.REBALANCING, {"asg_name": "web"}, ("rebalance", "web")),
        ],
    )
    async def test_dispatch(
        self, stub_router: EventRouter, recorder: Recorder,
        event_type: EventType, data: dict[str, str], expected: tuple[str, str],
    ):
        result = await stub_router.route(AlertEvent(event_type, data))

        assert recorder.calls == [expected]
        assert result.status == "ok"
        assert result.event_type == event_type
        assert result.detail

    @pytest.mark.asyncio
    async def test_swap_detail_names_replacement(self, stub_router: EventRouter):
        result = await stub_router.route(
            AlertEvent("prometheus.server.alert.SpotTerminationNotice", {"instance_id": "i-1"}),
        )
        assert result == ActionResult(
            "ok", EventType.SPOT_TERMINATION_NOTICE, "replaced i-1 with i-new",
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", [EventType.UPSCALING, EventType.DOWNSCALING])
    async def test_scaling_events_acknowledged(self, stub_router: EventRouter, recorder: Recorder, event_type):
        result = await stub_router.route(AlertEvent(event_type, {"asg_name": "web"}))
        assert result.status == "ok"
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, stub_router: EventRouter, recorder: Recorder):
        result = await stub_router.route(AlertEvent("something.else", {"asg_name": "web"}))
        assert result == ActionResult("ignored", "something.else")
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_missing_key(self, stub_router: EventRouter, recorder: Recorder):
        with pytest.raises(InvalidEvent):
            await stub_router.route(AlertEvent(EventType.SPOT_TERMINATION_NOTICE, {"asg_name": "web"}))
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_orchestration_error_propagates(self, stub_router: EventRouter, recorder: Recorder):
        recorder.error = NotFound("instance", "i-1")
        with pytest.raises(NotFound):
            await stub_router.route(AlertEvent(EventType.SPOT_TERMINATION_NOTICE, {"instance_id": "i-1"}))
        assert len(recorder.calls) == 1


class TestRouteEndToEnd:
    @pytest.mark.asyncio
    async def test_termination_notice_swaps(self, router: EventRouter, aws, recommender):
        aws.add_subnet("subnet-a", "eu-west-1a")
        aws.add_instance("i-1", "m4.large", "eu-west-1a", "subnet-a", spot_price="0.1")
        aws.add_group("g1", min_size=1, desired=1, subnets=["subnet-a"], members=["i-1"])
        recommender.recommendations["eu-west-1a"] = [InstanceTypeRecommendation("c5.large", cost_score="3")]

        result = await router.route(
            AlertEvent(EventType.SPOT_TERMINATION_NOTICE, {"instance_id": "i-1"}),
        )

        assert result.status == "ok"
        assert "i-1" not in aws.members["g1"]
        assert len(aws.members["g1"]) == 1
        assert aws.group("g1")["MinSize"] == 1
