"""Per-group mutual exclusion.

Orchestrations touching the same Auto Scaling group are serialized;
different groups proceed concurrently.
"""

from __future__ import annotations

import asyncio


class GroupLocks:
    """Hands out one ``asyncio.Lock`` per group name.

    Example:
        locks = GroupLocks()
        async with locks.lock("web-asg"):
            ...
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, group_name: str) -> asyncio.Lock:
        """Lock for ``group_name``, created on first use."""
        return self._locks.setdefault(group_name, asyncio.Lock())

    def locked(self, group_name: str) -> bool:
        lock = self._locks.get(group_name)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["GroupLocks"]
