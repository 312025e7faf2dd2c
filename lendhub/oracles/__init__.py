"""Price oracle implementations."""
from .pyth import PythOracle
from .static import ManualPriceOracle

__all__ = ["ManualPriceOracle", "PythOracle"]
