"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from lendhub.access.roles import RoleRegistry
from lendhub.config import (
    AppConfig,
    EngineConfig,
    KeeperConfig,
    NotificationsConfig,
    PoolConfig,
    PriceOracleConfig,
    PythConfig,
    RiskParamsConfig,
    RolesConfig,
    TelegramConfig,
    TokenConfig,
)
from lendhub.custody.memory import InMemoryCustody
from lendhub.engine.pool import LendingPool
from lendhub.fixed_point import WAD
from lendhub.models import Role
from lendhub.oracles.static import ManualPriceOracle
from lendhub.protocol import LendingProtocol, build_protocol

ADMIN = "0xAdmin"
RISK_ADMIN = "0xRiskAdmin"
LIQUIDATOR = "0xLiquidator"
KEEPER = "0xKeeper"

WETH = "0xWETH"
USDC = "0xUSDC"
DAI = "0xDAI"

START_TIME = 1_700_000_000
TEN_YEARS = 10 * 365 * 24 * 3600


class FakeClock:
    """Injectable unix-seconds clock that only moves when told to."""

    def __init__(self, now: int = START_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_risk_params() -> RiskParamsConfig:
    return RiskParamsConfig()


@pytest.fixture()
def sample_app_config(sample_risk_params: RiskParamsConfig) -> AppConfig:
    return AppConfig(
        engine=EngineConfig(stale_threshold_seconds=TEN_YEARS),
        tokens=(
            TokenConfig(address=WETH, symbol="WETH", decimals=18),
            TokenConfig(address=USDC, symbol="USDC", decimals=6),
            TokenConfig(address=DAI, symbol="DAI", decimals=18),
        ),
        pools={
            "CORE": PoolConfig(
                reserve_factor=WAD // 10,
                liquidation_bonus=WAD // 20,
                tokens={
                    "WETH": sample_risk_params,
                    "USDC": sample_risk_params,
                    "DAI": sample_risk_params,
                },
            )
        },
        keeper=KeeperConfig(check_interval_seconds=300, max_liquidations_per_run=5, operator=KEEPER),
        roles=RolesConfig(
            admin=(ADMIN,),
            risk_admin=(RISK_ADMIN,),
            liquidator=(LIQUIDATOR, KEEPER),
            keeper=(KEEPER,),
        ),
        price_oracle=PriceOracleConfig(
            provider="static",
            prices={"WETH": 3000 * WAD, "USDC": WAD, "DAI": WAD},
        ),
        notifications=NotificationsConfig(telegram=TelegramConfig(enabled=False)),
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.example.com/v2/updates/price/latest",
        feeds={WETH: "0xaaa111", USDC: "bbb222", DAI: "ccc333"},
    )


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def oracle(clock: FakeClock) -> ManualPriceOracle:
    oracle = ManualPriceOracle(clock=clock)
    oracle.set_price(WETH, 3000 * WAD)
    oracle.set_price(USDC, WAD)
    oracle.set_price(DAI, WAD)
    return oracle


@pytest.fixture()
def custody() -> InMemoryCustody:
    return InMemoryCustody()


@pytest.fixture()
def protocol(
    sample_app_config: AppConfig,
    clock: FakeClock,
    oracle: ManualPriceOracle,
    custody: InMemoryCustody,
) -> LendingProtocol:
    return build_protocol(sample_app_config, clock=clock, oracle=oracle, custody=custody)


@pytest.fixture()
def pool(protocol: LendingProtocol) -> LendingPool:
    return protocol.pool("CORE")


@pytest.fixture()
def access(protocol: LendingProtocol) -> RoleRegistry:
    assert isinstance(protocol.access, RoleRegistry)
    assert protocol.access.has_role(ADMIN, Role.ADMIN)
    return protocol.access


@pytest.fixture()
def funded(custody: InMemoryCustody) -> InMemoryCustody:
    """Custody with wallets for a lender, a borrower and the liquidators."""
    custody.mint("lender", USDC, 1_000_000 * 10**6)
    custody.mint("lender", DAI, 1_000_000 * WAD)
    custody.mint("lender", WETH, 1_000 * WAD)
    custody.mint("borrower", WETH, 100 * WAD)
    custody.mint("borrower", USDC, 100_000 * 10**6)
    custody.mint(LIQUIDATOR, USDC, 1_000_000 * 10**6)
    custody.mint(KEEPER, USDC, 1_000_000 * 10**6)
    return custody


@pytest.fixture()
def borrowed_position(pool: LendingPool, funded: InMemoryCustody) -> LendingPool:
    """10 WETH collateral at $3000 against 20,000 USDC debt (hf 1.275)."""
    pool.lend("lender", USDC, 500_000 * 10**6)
    pool.lend("borrower", WETH, 10 * WAD)
    pool.borrow("borrower", USDC, 20_000 * 10**6)
    return pool


# ---------------------------------------------------------------------------
# Sample YAML
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      seconds_per_year: 31536000
      stale_threshold_seconds: 600
    tokens:
      - {symbol: WETH, address: "0xWETH", decimals: 18}
      - {symbol: USDC, address: "0xUSDC", decimals: 6}
    pools:
      CORE:
        reserve_factor: 0.1
        liquidation_bonus: 0.05
        tokens:
          WETH: {ltv: 0.8, liquidation_threshold: 0.85, kink: 0.8, base_rate: 0.02, slope1: 0.05, slope2: 0.25}
          USDC: {ltv: 0.75, liquidation_threshold: 0.8}
    roles:
      admin: ["0xAdmin"]
      risk_admin: "0xRiskAdmin"
      liquidator: ["0xKeeper"]
      keeper: ["0xKeeper"]
    keeper:
      operator: "0xKeeper"
      check_interval_seconds: 120
      max_liquidations_per_run: 3
      close_factor: 0.5
      tracked_users:
        CORE: ["0xAlice", "0xBob"]
    price_oracle:
      provider: static
      prices: {WETH: 3000, USDC: 1}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
