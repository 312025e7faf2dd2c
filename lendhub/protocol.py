"""Wires the engine components together from an ``AppConfig``."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from .access.roles import RoleRegistry
from .config import AppConfig
from .custody.memory import InMemoryCustody
from .engine.factory import PoolFactory
from .engine.liquidation import LiquidationEngine
from .engine.pool import LendingPool
from .engine.risk import RiskEngine, RiskParamsRegistry
from .engine.tokens import TokenRegistry
from .interfaces.access_control import AccessControl
from .interfaces.custody import CustodyLedger
from .interfaces.notifier import Notifier
from .interfaces.price_oracle import PriceOracle
from .models import Role, TokenInfo
from .notifications import TelegramNotifier
from .oracles import ManualPriceOracle, PythOracle
from .services.keeper import KeeperScheduler, KeeperSettings

logger = logging.getLogger(__name__)


@dataclass
class LendingProtocol:
    tokens: TokenRegistry
    access: AccessControl
    oracle: PriceOracle
    custody: CustodyLedger
    risk_params: RiskParamsRegistry
    risk: RiskEngine
    factory: PoolFactory
    liquidations: LiquidationEngine
    keeper: KeeperScheduler

    def pool(self, pool_id: str) -> LendingPool:
        return self.factory.get_pool(pool_id)


def build_token_registry(config: AppConfig) -> TokenRegistry:
    return TokenRegistry(
        TokenInfo(address=t.address, symbol=t.symbol, decimals=t.decimals)
        for t in config.tokens
    )


def build_access(config: AppConfig) -> RoleRegistry:
    roles = config.roles
    access = RoleRegistry(roles.admin)
    granter = roles.admin[0]
    for role, members in (
        (Role.RISK_ADMIN, roles.risk_admin),
        (Role.LIQUIDATOR, roles.liquidator),
        (Role.KEEPER, roles.keeper),
    ):
        for account in members:
            access.grant_role(granter, role, account)
    return access


def build_oracle(
    config: AppConfig, tokens: TokenRegistry, clock: Callable[[], int] | None = None
) -> PriceOracle:
    cfg = config.price_oracle
    threshold = config.engine.stale_threshold_seconds
    if cfg.provider == "pyth":
        feeds = {tokens.by_symbol(symbol).address: feed for symbol, feed in cfg.pyth.feeds.items()}
        return PythOracle(replace(cfg.pyth, feeds=feeds), clock=clock, stale_threshold=threshold)

    oracle = ManualPriceOracle(clock=clock, stale_threshold=threshold)
    for symbol, price in cfg.prices.items():
        oracle.set_price(tokens.by_symbol(symbol).address, price)
    return oracle


def build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    return notifiers


def build_protocol(
    config: AppConfig,
    clock: Callable[[], int] | None = None,
    oracle: PriceOracle | None = None,
    custody: CustodyLedger | None = None,
    access: AccessControl | None = None,
) -> LendingProtocol:
    """Create tokens, pools, risk params and the keeper described by ``config``.

    An injected ``access`` must already grant the configured admin and risk
    admin their roles; otherwise roles are taken from ``config.roles``.
    """
    tokens = build_token_registry(config)
    access = access or build_access(config)
    oracle = oracle or build_oracle(config, tokens, clock)
    oracle.set_stale_threshold(config.engine.stale_threshold_seconds)
    custody = custody or InMemoryCustody()

    risk_params = RiskParamsRegistry(access)
    risk = RiskEngine(oracle, tokens, risk_params)
    factory = PoolFactory(
        tokens, risk, custody, access,
        clock=clock, seconds_per_year=config.engine.seconds_per_year,
    )

    admin = config.roles.admin[0]
    risk_admin = config.roles.risk_admin[0]
    for pool_id, pool_cfg in config.pools.items():
        pool = factory.create_pool(admin, pool_id, pool_cfg.to_pool_params())
        for symbol, params in pool_cfg.tokens.items():
            token = tokens.by_symbol(symbol).address
            risk_params.set_risk_params(risk_admin, pool_id, token, params.to_risk_params())
            pool.add_token(admin, token)

    liquidations = LiquidationEngine(risk, custody, access)
    k = config.keeper
    keeper = KeeperScheduler(
        factory,
        liquidations,
        risk,
        access,
        KeeperSettings(
            check_interval=k.check_interval_seconds,
            max_liquidations_per_run=k.max_liquidations_per_run,
            min_health_factor=k.min_health_factor,
            close_factor=k.close_factor,
        ),
        clock=clock,
    )
    for pool_id, users in k.tracked_users.items():
        keeper.batch_add_users(admin, pool_id, users)

    logger.info(
        "Protocol ready: %d token(s), pools %s", len(tokens), ", ".join(factory.pool_ids())
    )
    return LendingProtocol(
        tokens=tokens,
        access=access,
        oracle=oracle,
        custody=custody,
        risk_params=risk_params,
        risk=risk,
        factory=factory,
        liquidations=liquidations,
        keeper=keeper,
    )
