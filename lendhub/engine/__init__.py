from .factory import PoolFactory
from .interest_rate import InterestRateModel, to_apy, utilization
from .ledger import accrue
from .liquidation import LiquidationEngine
from .pool import LendingPool
from .risk import RiskEngine, RiskParamsRegistry
from .tokens import TokenRegistry

__all__ = [
    "InterestRateModel",
    "LendingPool",
    "LiquidationEngine",
    "PoolFactory",
    "RiskEngine",
    "RiskParamsRegistry",
    "TokenRegistry",
    "accrue",
    "to_apy",
    "utilization",
]
