from __future__ import annotations

import pytest

from asgctl.core import ProvisioningTimeout
from asgctl.polling import NotReady, PollingPolicy, wait_until

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestPollingPolicy:
    def test_defaults(self):
        policy = PollingPolicy()
        assert policy.interval == 1.0
        assert policy.timeout == 600.0

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError, match="interval"):
            PollingPolicy(interval=-1)

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError, match="timeout"):
            PollingPolicy(timeout=-1)


class TestWaitUntil:
    @pytest.mark.asyncio
    async def test_returns_first_ready_value(self):
        calls = {"n": 0}

        async def check() -> str:
            calls["n"] += 1
            if calls["n"] < 3:
                raise NotReady([f"poll-{calls['n']}"])
            return "done"

        result = await wait_until(check, PollingPolicy(interval=0, timeout=5), "thing")
        assert result == "done"
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_timeout_carries_last_pending(self):
        async def check() -> None:
            raise NotReady(["sir-1", "sir-2"])

        with pytest.raises(ProvisioningTimeout) as exc_info:
            await wait_until(check, PollingPolicy(interval=0.01, timeout=0.05), "spot requests")

        assert exc_info.value.pending == ("sir-1", "sir-2")
        assert exc_info.value.what == "spot requests"
        assert "sir-1" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        calls = {"n": 0}

        async def check() -> None:
            calls["n"] += 1
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await wait_until(check, PollingPolicy(interval=0, timeout=5), "thing")
        assert calls["n"] == 1

    def test_not_ready_message(self):
        assert str(NotReady(["a", "b"])) == "a, b"
        assert NotReady().pending == ()
