"""Notifier protocol — channel for keeper run reports."""
from typing import Protocol


class Notifier(Protocol):
    """Abstract interface for reporting keeper activity.

    ``send_alert`` carries failures that need an operator; ``send_log`` carries
    routine liquidation summaries.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
