"""Async keeper loop — refresh prices, run upkeep, report, back off on failure."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone

from ..engine.tokens import TokenRegistry
from ..fixed_point import from_wad
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import PriceOracle
from ..models import HEALTH_FACTOR_MAX, LiquidationAttempt, UpkeepReport
from .keeper import KeeperScheduler

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """``min(base * 2**attempt, cap)`` seconds."""
    return min(base * 2**attempt, cap)


class KeeperRunner:
    """Drives a ``KeeperScheduler`` periodically and reports each run."""

    def __init__(
        self,
        keeper: KeeperScheduler,
        operator: str,
        oracle: PriceOracle | None = None,
        notifiers: Sequence[Notifier] = (),
        tokens: TokenRegistry | None = None,
        pool_ids: Sequence[str] | None = None,
        retry_base: float = 5,
        retry_cap: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._keeper = keeper
        self._operator = operator
        self._oracle = oracle
        self._notifiers = list(notifiers)
        self._tokens = tokens
        self._pool_ids = list(pool_ids) if pool_ids is not None else None
        self._retry_base = retry_base
        self._retry_cap = retry_cap
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _symbol(self, token: str) -> str:
        return self._tokens.symbol(token) if self._tokens else token

    @staticmethod
    def _hf(value: int) -> str:
        if value == HEALTH_FACTOR_MAX:
            return "∞"
        return f"{from_wad(value):.4f}"

    def _format_attempt(self, attempt: LiquidationAttempt) -> str:
        c = attempt.candidate
        if attempt.success and attempt.event is not None:
            e = attempt.event
            return (
                f"✅ {c.user} · {c.pool_id}\n"
                f"  Repaid {e.repay_amount} {self._symbol(e.debt_token)}, "
                f"seized {e.seized_amount} {self._symbol(e.collateral_token)}\n"
                f"  HF {self._hf(e.health_factor_before)} → {self._hf(e.health_factor_after)}"
            )
        retry = " (retrying next run)" if attempt.retryable else ""
        return (
            f"❌ {c.user} · {c.pool_id} · HF {self._hf(c.health_factor)}\n"
            f"  {attempt.error_code}: {attempt.error}{retry}"
        )

    def _build_report_message(self, report: UpkeepReport) -> str:
        lines = [self._format_attempt(a) for a in report.attempts]
        return (
            f"🤖 Keeper run · {len(report.succeeded)} liquidated, {len(report.failed)} failed\n"
            f"\n"
            + "\n\n".join(lines)
            + f"\n\n{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def run_once(self) -> UpkeepReport:
        """Refresh prices (if the oracle can), run one upkeep, report it."""
        refresh = getattr(self._oracle, "refresh", None)
        if refresh is not None:
            await refresh()

        report = self._keeper.run_upkeep(self._operator, self._pool_ids)
        if not report.attempts:
            return report

        logger.info(
            "Keeper run — %d liquidated, %d failed",
            len(report.succeeded), len(report.failed),
        )
        message = self._build_report_message(report)
        if any(not a.retryable for a in report.failed):
            await self._send_alert(message, subject="⚠️ Keeper: liquidations failed")
        else:
            await self._send_log(message, silent=not report.failed)
        return report

    async def run_continuous(
        self, interval: int | None = None, max_runs: int | None = None
    ) -> None:
        """Run the keeper every ``interval`` seconds until cancelled.

        Failed runs are retried after ``backoff_delay``; the attempt counter
        resets after the next successful run.
        """
        interval = interval or self._keeper.settings.check_interval
        logger.info("Starting keeper loop (every %d seconds)", interval)

        attempt = 0
        runs = 0
        while max_runs is None or runs < max_runs:
            runs += 1
            try:
                await self.run_once()
                attempt = 0
                delay: float = interval
            except Exception as e:
                delay = backoff_delay(attempt, self._retry_base, self._retry_cap)
                attempt += 1
                logger.error("Error in keeper loop: %s (retrying in %.0fs)", e, delay)
            await self._sleep(delay)
