"""Protocol interfaces for the engine's external collaborators."""
from .access_control import AccessControl
from .custody import CustodyLedger
from .notifier import Notifier
from .price_oracle import PriceOracle

__all__ = ["AccessControl", "CustodyLedger", "Notifier", "PriceOracle"]
