"""Access control protocol — role checks for privileged operations."""
from typing import Protocol

from ..models import Role


class AccessControl(Protocol):
    """Abstract interface answering whether a caller holds a role."""

    def has_role(self, caller: str, role: Role) -> bool: ...
