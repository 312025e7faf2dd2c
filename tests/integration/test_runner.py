"""Integration tests for the async keeper loop."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lendhub.custody.memory import InMemoryCustody
from lendhub.engine.pool import LendingPool
from lendhub.fixed_point import WAD
from lendhub.models import HEALTH_FACTOR_MAX, Role, UpkeepReport
from lendhub.oracles.static import ManualPriceOracle
from lendhub.protocol import LendingProtocol
from lendhub.services.runner import KeeperRunner, backoff_delay

ADMIN = "0xAdmin"
KEEPER = "0xKeeper"
WETH = "0xWETH"
USDC = "0xUSDC"


def _notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.send_alert = AsyncMock(return_value=True)
    notifier.send_log = AsyncMock(return_value=True)
    return notifier


@pytest.fixture()
def underwater_users(
    protocol: LendingProtocol,
    pool: LendingPool,
    funded: InMemoryCustody,
    oracle: ManualPriceOracle,
) -> list[str]:
    users = ["0xAlice", "0xBob"]
    pool.lend("lender", USDC, 100_000 * 10**6)
    for user in users:
        funded.mint(user, WETH, WAD)
        pool.lend(user, WETH, WAD)
        pool.borrow(user, USDC, 2_000 * 10**6)
    protocol.keeper.batch_add_users(ADMIN, "CORE", users)
    oracle.set_price(WETH, 2000 * WAD)
    return users


class TestBackoff:
    def test_doubles_until_cap(self) -> None:
        assert [backoff_delay(n, 5, 300) for n in range(8)] == [5, 10, 20, 40, 80, 160, 300, 300]


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_successful_run_sends_log(
        self, protocol: LendingProtocol, underwater_users: list[str]
    ) -> None:
        notifier = _notifier()
        runner = KeeperRunner(
            protocol.keeper, KEEPER, oracle=protocol.oracle, notifiers=[notifier], tokens=protocol.tokens
        )

        report = await runner.run_once()

        assert len(report.succeeded) == 2
        notifier.send_log.assert_awaited_once()
        notifier.send_alert.assert_not_awaited()
        message = notifier.send_log.call_args[0][0]
        assert "2 liquidated, 0 failed" in message
        assert "0xAlice" in message
        assert "USDC" in message and "WETH" in message

    @pytest.mark.asyncio
    async def test_failures_send_alert(
        self, protocol: LendingProtocol, underwater_users: list[str], access
    ) -> None:
        access.revoke_role(ADMIN, Role.LIQUIDATOR, KEEPER)
        notifier = _notifier()
        runner = KeeperRunner(protocol.keeper, KEEPER, notifiers=[notifier])

        report = await runner.run_once()

        assert len(report.failed) == 2
        notifier.send_alert.assert_awaited_once()
        assert notifier.send_alert.call_args.kwargs["subject"] == "⚠️ Keeper: liquidations failed"
        assert "ErrUnauthorized" in notifier.send_alert.call_args[0][0]
        assert "retrying" not in notifier.send_alert.call_args[0][0]

    @pytest.mark.asyncio
    async def test_retryable_failures_send_log(
        self, protocol: LendingProtocol, underwater_users: list[str], pool: LendingPool
    ) -> None:
        pool.pause(ADMIN)
        notifier = _notifier()
        runner = KeeperRunner(protocol.keeper, KEEPER, notifiers=[notifier])

        report = await runner.run_once()

        assert len(report.failed) == 2
        notifier.send_alert.assert_not_awaited()
        notifier.send_log.assert_awaited_once()
        assert notifier.send_log.call_args.kwargs["silent"] is False
        message = notifier.send_log.call_args[0][0]
        assert "ErrPaused" in message
        assert "retrying next run" in message

    @pytest.mark.asyncio
    async def test_quiet_run_sends_nothing(self, protocol: LendingProtocol) -> None:
        notifier = _notifier()
        runner = KeeperRunner(protocol.keeper, KEEPER, notifiers=[notifier])

        report = await runner.run_once()

        assert report.performed
        notifier.send_log.assert_not_awaited()
        notifier.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifier_error_does_not_fail_run(
        self, protocol: LendingProtocol, underwater_users: list[str]
    ) -> None:
        broken = _notifier()
        broken.send_log = AsyncMock(side_effect=RuntimeError("boom"))
        working = _notifier()
        runner = KeeperRunner(protocol.keeper, KEEPER, notifiers=[broken, working])

        report = await runner.run_once()

        assert len(report.succeeded) == 2
        working.send_log.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refreshes_oracle_first(self, protocol: LendingProtocol) -> None:
        oracle = MagicMock()
        oracle.refresh = AsyncMock(return_value={})
        runner = KeeperRunner(protocol.keeper, KEEPER, oracle=oracle)

        await runner.run_once()

        oracle.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_oracle_without_refresh(self, protocol: LendingProtocol) -> None:
        runner = KeeperRunner(protocol.keeper, KEEPER, oracle=protocol.oracle)
        report = await runner.run_once()
        assert report.performed


class TestFormatting:
    def test_infinite_health_factor(self) -> None:
        assert KeeperRunner._hf(HEALTH_FACTOR_MAX) == "∞"
        assert KeeperRunner._hf(WAD // 2) == "0.5000"


class TestRunContinuous:
    @pytest.mark.asyncio
    async def test_backoff_then_reset(self, protocol: LendingProtocol) -> None:
        sleep = AsyncMock()
        runner = KeeperRunner(protocol.keeper, KEEPER, retry_base=5, retry_cap=300, sleep=sleep)
        outcomes = [RuntimeError("rpc"), RuntimeError("rpc"), UpkeepReport(performed=True), RuntimeError("rpc")]

        with patch.object(runner, "run_once", AsyncMock(side_effect=outcomes)):
            await runner.run_continuous(interval=60, max_runs=4)

        assert [c.args[0] for c in sleep.await_args_list] == [5, 10, 60, 5]

    @pytest.mark.asyncio
    async def test_interval_defaults_to_keeper_setting(self, protocol: LendingProtocol) -> None:
        sleep = AsyncMock()
        runner = KeeperRunner(protocol.keeper, KEEPER, sleep=sleep)

        await runner.run_continuous(max_runs=2)

        assert [c.args[0] for c in sleep.await_args_list] == [300, 300]

    @pytest.mark.asyncio
    async def test_liquidates_across_runs(
        self, protocol: LendingProtocol, underwater_users: list[str], clock
    ) -> None:
        async def tick(seconds: float) -> None:
            clock.advance(int(seconds))

        notifier = _notifier()
        runner = KeeperRunner(protocol.keeper, KEEPER, notifiers=[notifier], sleep=tick)

        await runner.run_continuous(interval=300, max_runs=2)

        pool = protocol.pool("CORE")
        assert all(pool.debt_balance(u, USDC) < 2_000 * 10**6 for u in underwater_users)
        assert notifier.send_log.await_count == 2
