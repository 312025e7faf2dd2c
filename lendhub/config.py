"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .fixed_point import SECONDS_PER_YEAR, WAD, to_wad
from .models import PoolParams, RiskParams

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    seconds_per_year: int = SECONDS_PER_YEAR
    stale_threshold_seconds: int = 3600


@dataclass(frozen=True)
class TokenConfig:
    address: str = ""
    symbol: str = ""
    decimals: int = 18


@dataclass(frozen=True)
class RiskParamsConfig:
    """Ratios in WAD."""

    ltv: int = to_wad("0.8")
    liquidation_threshold: int = to_wad("0.85")
    kink: int = to_wad("0.8")
    base_rate: int = to_wad("0.02")
    slope1: int = to_wad("0.05")
    slope2: int = to_wad("0.25")

    def to_risk_params(self) -> RiskParams:
        return RiskParams(
            ltv=self.ltv,
            liquidation_threshold=self.liquidation_threshold,
            kink=self.kink,
            base_rate=self.base_rate,
            slope1=self.slope1,
            slope2=self.slope2,
        )


@dataclass(frozen=True)
class PoolConfig:
    reserve_factor: int = WAD // 10
    liquidation_bonus: int = WAD // 20
    tokens: dict[str, RiskParamsConfig] = field(default_factory=dict)

    def to_pool_params(self) -> PoolParams:
        return PoolParams(
            reserve_factor=self.reserve_factor,
            liquidation_bonus=self.liquidation_bonus,
        )


@dataclass(frozen=True)
class KeeperConfig:
    check_interval_seconds: int = 300
    max_liquidations_per_run: int = 5
    min_health_factor: int = WAD
    close_factor: int = WAD // 2
    retry_base_seconds: int = 5
    retry_cap_seconds: int = 300
    operator: str = ""
    tracked_users: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class RolesConfig:
    admin: tuple[str, ...] = ()
    risk_admin: tuple[str, ...] = ()
    liquidator: tuple[str, ...] = ()
    keeper: tuple[str, ...] = ()


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "static"
    prices: dict[str, int] = field(default_factory=dict)
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    tokens: tuple[TokenConfig, ...] = ()
    pools: dict[str, PoolConfig] = field(default_factory=dict)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    roles: RolesConfig = field(default_factory=RolesConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _ratio(raw: dict[str, Any], key: str, default: int) -> int:
    """Read a decimal ratio (``0.85``, ``"0.85"``) as WAD without float rounding."""
    if key not in raw:
        return default
    return to_wad(str(raw[key]))


def _names(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,) if raw else ()
    return tuple(str(item) for item in raw if item)


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        seconds_per_year=int(raw.get("seconds_per_year", SECONDS_PER_YEAR)),
        stale_threshold_seconds=int(raw.get("stale_threshold_seconds", 3600)),
    )


def _build_tokens(raw: list[dict[str, Any]]) -> tuple[TokenConfig, ...]:
    return tuple(
        TokenConfig(
            address=str(t.get("address", "")),
            symbol=str(t.get("symbol", "")),
            decimals=int(t.get("decimals", 18)),
        )
        for t in raw
    )


def _build_risk_params(raw: dict[str, Any]) -> RiskParamsConfig:
    d = RiskParamsConfig()
    return RiskParamsConfig(
        ltv=_ratio(raw, "ltv", d.ltv),
        liquidation_threshold=_ratio(raw, "liquidation_threshold", d.liquidation_threshold),
        kink=_ratio(raw, "kink", d.kink),
        base_rate=_ratio(raw, "base_rate", d.base_rate),
        slope1=_ratio(raw, "slope1", d.slope1),
        slope2=_ratio(raw, "slope2", d.slope2),
    )


def _build_pools(raw: dict[str, Any]) -> dict[str, PoolConfig]:
    pools: dict[str, PoolConfig] = {}
    for name, cfg in raw.items():
        pools[name] = PoolConfig(
            reserve_factor=_ratio(cfg, "reserve_factor", WAD // 10),
            liquidation_bonus=_ratio(cfg, "liquidation_bonus", WAD // 20),
            tokens={
                symbol: _build_risk_params(params or {})
                for symbol, params in (cfg.get("tokens") or {}).items()
            },
        )
    return pools


def _build_keeper(raw: dict[str, Any]) -> KeeperConfig:
    return KeeperConfig(
        check_interval_seconds=int(raw.get("check_interval_seconds", 300)),
        max_liquidations_per_run=int(raw.get("max_liquidations_per_run", 5)),
        min_health_factor=_ratio(raw, "min_health_factor", WAD),
        close_factor=_ratio(raw, "close_factor", WAD // 2),
        retry_base_seconds=int(raw.get("retry_base_seconds", 5)),
        retry_cap_seconds=int(raw.get("retry_cap_seconds", 300)),
        operator=str(raw.get("operator", "")),
        tracked_users={
            pool: _names(users) for pool, users in (raw.get("tracked_users") or {}).items()
        },
    )


def _build_roles(raw: dict[str, Any]) -> RolesConfig:
    return RolesConfig(
        admin=_names(raw.get("admin")),
        risk_admin=_names(raw.get("risk_admin")),
        liquidator=_names(raw.get("liquidator")),
        keeper=_names(raw.get("keeper")),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth") or {}
    return PriceOracleConfig(
        provider=raw.get("provider", "static"),
        prices={symbol: to_wad(str(price)) for symbol, price in (raw.get("prices") or {}).items()},
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds") or {}),
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram") or {}
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine") or {}),
        tokens=_build_tokens(raw.get("tokens") or []),
        pools=_build_pools(raw.get("pools") or {}),
        keeper=_build_keeper(raw.get("keeper") or {}),
        roles=_build_roles(raw.get("roles") or {}),
        price_oracle=_build_price_oracle(raw.get("price_oracle") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.roles.admin:
        raise ValueError("At least one admin must be configured")
    if not cfg.roles.risk_admin:
        raise ValueError("At least one risk_admin must be configured")
    if not cfg.tokens:
        raise ValueError("At least one token must be configured")
    if cfg.engine.seconds_per_year <= 0:
        raise ValueError("engine.seconds_per_year must be positive")

    symbols: set[str] = set()
    for token in cfg.tokens:
        if not token.address or not token.symbol:
            raise ValueError(f"Token '{token.symbol}' needs an address and a symbol")
        if token.symbol in symbols:
            raise ValueError(f"Token symbol '{token.symbol}' is configured twice")
        symbols.add(token.symbol)

    if not cfg.pools:
        raise ValueError("At least one pool must be configured")
    for name, pool in cfg.pools.items():
        if not pool.tokens:
            raise ValueError(f"Pool '{name}' has no tokens")
        for symbol, params in pool.tokens.items():
            if symbol not in symbols:
                raise ValueError(f"Pool '{name}' references unknown token '{symbol}'")
            if params.liquidation_threshold < params.ltv:
                raise ValueError(
                    f"Pool '{name}' token '{symbol}': liquidation threshold below LTV"
                )

    keeper = cfg.keeper
    if keeper.check_interval_seconds < 0:
        raise ValueError("keeper.check_interval_seconds must be non-negative")
    if keeper.max_liquidations_per_run <= 0:
        raise ValueError("keeper.max_liquidations_per_run must be positive")
    if not 0 < keeper.close_factor <= WAD:
        raise ValueError("keeper.close_factor must be in (0, 1]")
    if keeper.retry_base_seconds <= 0 or keeper.retry_cap_seconds < keeper.retry_base_seconds:
        raise ValueError("keeper retry delays must satisfy 0 < base <= cap")
    for pool in keeper.tracked_users:
        if pool not in cfg.pools:
            raise ValueError(f"Keeper tracks users in unknown pool '{pool}'")

    oracle = cfg.price_oracle
    if oracle.provider not in ("static", "pyth"):
        raise ValueError(f"Unknown price oracle provider '{oracle.provider}'")
    referenced = oracle.prices if oracle.provider == "static" else oracle.pyth.feeds
    for symbol in referenced:
        if symbol not in symbols:
            raise ValueError(f"Price oracle references unknown token '{symbol}'")
