"""Event Router.

Maps an inbound capacity event to the orchestration that handles it.
Errors from the orchestration propagate to the caller unchanged; no event
is retried here.
"""

from __future__ import annotations

from loguru import logger

from asgctl.constants import GROUP_NAME_KEY, INSTANCE_ID_KEY, EventType
from asgctl.core import InvalidEvent
from asgctl.orchestration.initializer import FleetInitializer
from asgctl.orchestration.rebalancer import FleetRebalancer
from asgctl.orchestration.swap import SwapOrchestrator
from asgctl.types import ActionResult, AlertEvent


def require(event: AlertEvent, key: str) -> str:
    value = event.data.get(key, "")
    if not value:
        raise InvalidEvent(f"{event.event_type}: missing data key '{key}'")
    return value


class EventRouter:
    def __init__(
        self,
        swap: SwapOrchestrator,
        initializer: FleetInitializer,
        rebalancer: FleetRebalancer,
    ) -> None:
        self.swap = swap
        self.initializer = initializer
        self.rebalancer = rebalancer
        self._log = logger.bind(component="router")

    async def route(self, event: AlertEvent) -> ActionResult:
        """Dispatch ``event`` and acknowledge it.

        Raises:
            InvalidEvent: If the event lacks the data key its handler needs.
            AsgctlError: Whatever the dispatched orchestration raises.
        """
        self._log.info(f"Received {event.event_type} {dict(event.data)}")

        match event.event_type:
            case EventType.SPOT_TERMINATION_NOTICE:
                instance_id = require(event, INSTANCE_ID_KEY)
                new_id = await self.swap.swap(instance_id)
                detail = f"replaced {instance_id} with {new_id}"

            case EventType.SPOT_TOO_EXPENSIVE:
                instance_id = require(event, INSTANCE_ID_KEY)
                new_id = await self.swap.swap_and_terminate(instance_id)
                detail = f"replaced and terminated {instance_id}, new instance {new_id}"

            case EventType.INITIALIZING:
                group = require(event, GROUP_NAME_KEY)
                ids = await self.initializer.initialize(group)
                detail = f"initialized {group} with {len(ids)} instances"

            case EventType.REBALANCING:
                group = require(event, GROUP_NAME_KEY)
                replaced = await self.rebalancer.rebalance(group)
                detail = f"replaced {len(replaced)} buckets in {group}"

            case EventType.UPSCALING | EventType.DOWNSCALING:
                group = require(event, GROUP_NAME_KEY)
                self._log.info(f"{event.event_type} {group}: no action")
                detail = f"{event.event_type} acknowledged for {group}"

            case _:
                self._log.warning(f"Ignoring unknown event type {event.event_type!r}")
                return ActionResult("ignored", event.event_type)

        self._log.info(f"{event.event_type}: {detail}")
        return ActionResult("ok", event.event_type, detail)


__all__ = [
    "EventRouter",
    "require",
]
