"""Integration tests for wiring the protocol from configuration."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from lendhub.config import (
    AppConfig,
    NotificationsConfig,
    PriceOracleConfig,
    PythConfig,
    TelegramConfig,
    load_config,
)
from lendhub.custody.memory import InMemoryCustody
from lendhub.fixed_point import WAD, to_wad
from lendhub.models import Role
from lendhub.notifications import TelegramNotifier
from lendhub.oracles import ManualPriceOracle, PythOracle
from lendhub.protocol import build_access, build_notifiers, build_protocol

WETH = "0xWETH"
USDC = "0xUSDC"


class TestBootstrapFromYaml:
    def test_builds_pools_and_params(self, sample_yaml_path: Path, clock) -> None:
        config = load_config(sample_yaml_path)
        protocol = build_protocol(config, clock=clock)

        pool = protocol.pool("CORE")
        assert pool.get_supported_tokens() == [WETH, USDC]
        assert pool.params.reserve_factor == to_wad("0.1")
        assert pool.params.liquidation_bonus == to_wad("0.05")
        assert protocol.risk_params.get("CORE", USDC).ltv == to_wad("0.75")
        assert protocol.risk_params.get("CORE", USDC).kink == to_wad("0.8")
        assert protocol.tokens.get(USDC).decimals == 6

    def test_static_prices_and_threshold(self, sample_yaml_path: Path, clock) -> None:
        protocol = build_protocol(load_config(sample_yaml_path), clock=clock)

        assert isinstance(protocol.oracle, ManualPriceOracle)
        assert protocol.oracle.get_price_usd(WETH) == (3000 * WAD, False)
        assert protocol.oracle.stale_threshold == 600

    def test_keeper_and_roles(self, sample_yaml_path: Path, clock) -> None:
        protocol = build_protocol(load_config(sample_yaml_path), clock=clock)

        assert protocol.keeper.settings.check_interval == 120
        assert protocol.keeper.settings.max_liquidations_per_run == 3
        assert protocol.keeper.settings.close_factor == WAD // 2
        assert protocol.keeper.get_tracked_users("CORE") == ["0xAlice", "0xBob"]
        assert protocol.access.has_role("0xRiskAdmin", Role.RISK_ADMIN)
        assert protocol.access.has_role("0xKeeper", Role.KEEPER)
        assert protocol.access.has_role("0xKeeper", Role.LIQUIDATOR)
        assert not protocol.access.has_role("0xKeeper", Role.ADMIN)

    def test_pools_work_end_to_end(self, sample_yaml_path: Path, clock) -> None:
        custody = InMemoryCustody()
        custody.mint("lender", USDC, 10_000 * 10**6)
        custody.mint("0xAlice", WETH, WAD)
        protocol = build_protocol(load_config(sample_yaml_path), clock=clock, custody=custody)
        pool = protocol.pool("CORE")

        pool.lend("lender", USDC, 10_000 * 10**6)
        pool.lend("0xAlice", WETH, WAD)
        pool.borrow("0xAlice", USDC, 2_400 * 10**6)

        assert custody.balance_of("0xAlice", USDC) == 2_400 * 10**6
        assert pool.get_health_factor("0xAlice").health_factor == to_wad("1.0625")


class TestBuilders:
    def test_injected_oracle_gets_configured_threshold(
        self, sample_app_config: AppConfig, clock
    ) -> None:
        oracle = ManualPriceOracle(clock=clock, stale_threshold=5)
        build_protocol(sample_app_config, clock=clock, oracle=oracle)
        assert oracle.stale_threshold == sample_app_config.engine.stale_threshold_seconds

    def test_pyth_provider_maps_feeds_to_addresses(
        self, sample_app_config: AppConfig, clock
    ) -> None:
        config = replace(
            sample_app_config,
            price_oracle=PriceOracleConfig(
                provider="pyth",
                pyth=PythConfig(feeds={"WETH": "0xaaa111", "USDC": "bbb222"}),
            ),
        )
        protocol = build_protocol(config, clock=clock)

        assert isinstance(protocol.oracle, PythOracle)
        assert protocol.oracle.price_feeds == {WETH: "0xaaa111", USDC: "bbb222"}
        # nothing fetched yet
        assert protocol.oracle.get_price_usd(WETH) == (0, True)

    def test_build_access(self, sample_app_config: AppConfig) -> None:
        access = build_access(sample_app_config)
        assert access.members(Role.ADMIN) == frozenset({"0xAdmin"})
        assert access.members(Role.LIQUIDATOR) == frozenset({"0xLiquidator", "0xKeeper"})

    def test_build_notifiers(self, sample_yaml_path: Path, sample_app_config: AppConfig) -> None:
        notifiers = build_notifiers(load_config(sample_yaml_path))
        assert len(notifiers) == 1
        assert isinstance(notifiers[0], TelegramNotifier)

        assert build_notifiers(sample_app_config) == []

    def test_disabled_telegram_is_never_built(self, sample_app_config: AppConfig) -> None:
        telegram = TelegramConfig(
            enabled=False, alert_bot_token="alert-tok", log_bot_token="log-tok", chat_id="1"
        )
        config = replace(sample_app_config, notifications=NotificationsConfig(telegram=telegram))
        assert build_notifiers(config) == []

        telegram = replace(telegram, enabled=True)
        enabled = replace(config, notifications=NotificationsConfig(telegram=telegram))
        (notifier,) = build_notifiers(enabled)
        assert notifier.chat_id == "1"
        assert not hasattr(notifier, "enabled")
