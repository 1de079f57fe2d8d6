"""Orchestrators that mutate group membership.

Each one serializes on its group's lock and records compensating actions
in a saga, so ``min_size`` and ``max_size`` are restored on every exit path.
"""

from asgctl.orchestration.initializer import FleetInitializer
from asgctl.orchestration.locks import GroupLocks
from asgctl.orchestration.rebalancer import FleetRebalancer
from asgctl.orchestration.saga import Saga
from asgctl.orchestration.swap import SwapOrchestrator

__all__ = [
    "FleetInitializer",
    "FleetRebalancer",
    "GroupLocks",
    "Saga",
    "SwapOrchestrator",
]
