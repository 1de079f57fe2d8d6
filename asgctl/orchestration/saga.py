"""Compensating actions for multi-step group mutations.

A ``Saga`` is an async context manager that records undo actions as an
orchestration makes progress. On failure or cancellation the recorded
compensations run last-in-first-out, then the finalizers, each one
best-effort and logged, and the original error propagates unchanged.
Finalizers also run on success; there a failing finalizer is raised
after all of them had their chance.

Example:
    async with Saga("swap", log) as saga:
        saga.always("restore min size", lambda: membership.set_min_size(group, 2))
        await membership.detach(group, [instance_id])
        reattach = saga.on_failure("reattach", lambda: membership.attach(group, [instance_id]))
        ...
        reattach.discard()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from loguru import logger

type Action = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class Compensation:
    """A recorded undo step. Discarded steps are skipped."""

    description: str
    action: Action
    active: bool = True

    def discard(self) -> None:
        self.active = False


class Saga:
    """Records compensations and finalizers for one orchestration run."""

    def __init__(self, name: str, log: Any = None) -> None:
        self.name = name
        self._log = log or logger.bind(component="saga", operation=name)
        self._compensations: list[Compensation] = []
        self._finalizers: list[Compensation] = []

    def on_failure(self, description: str, action: Action) -> Compensation:
        """Register an action that runs only if the saga fails or is cancelled."""
        step = Compensation(description, action)
        self._compensations.append(step)
        return step

    def always(self, description: str, action: Action) -> Compensation:
        """Register an action that runs on every exit path."""
        step = Compensation(description, action)
        self._finalizers.append(step)
        return step

    async def __aenter__(self) -> Saga:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            errors = await self._run(self._finalizers)
            if errors:
                raise errors[0]
            return

        self._log.warning(f"{self.name} failed ({type(exc).__name__}: {exc}), compensating")
        await self._run(self._compensations)
        await self._run(self._finalizers)

    async def _run(self, steps: list[Compensation]) -> list[Exception]:
        errors: list[Exception] = []
        for step in reversed(steps):
            if not step.active:
                continue
            step.discard()
            try:
                await step.action()
                self._log.debug(f"{self.name}: {step.description} done")
            except Exception as e:
                self._log.error(f"{self.name}: {step.description} failed: {e}")
                errors.append(e)
        return errors


__all__ = [
    "Compensation",
    "Saga",
]
