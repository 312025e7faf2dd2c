"""Service modules"""
from .keeper import KeeperScheduler, KeeperSettings
from .runner import KeeperRunner, backoff_delay

__all__ = ["KeeperScheduler", "KeeperSettings", "KeeperRunner", "backoff_delay"]
