"""In-memory role registry implementing the ``AccessControl`` protocol."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import UnauthorizedError
from ..interfaces.access_control import AccessControl
from ..models import Role

logger = logging.getLogger(__name__)


def require_role(access: AccessControl, caller: str, role: Role) -> None:
    """Raise ``UnauthorizedError`` unless ``caller`` holds ``role``."""
    if not access.has_role(caller, role):
        raise UnauthorizedError(f"{caller} lacks role {role.value}")


class RoleRegistry:
    """Role storage kept outside the accounting core.

    Only ADMIN holders may grant or revoke roles.
    """

    def __init__(self, admins: Iterable[str] = ()) -> None:
        self._members: dict[Role, set[str]] = {role: set() for role in Role}
        self._members[Role.ADMIN].update(admins)

    def has_role(self, caller: str, role: Role) -> bool:
        return caller in self._members[role]

    def grant_role(self, caller: str, role: Role, account: str) -> bool:
        """Grant ``role`` to ``account``. Returns False if it was already held."""
        require_role(self, caller, Role.ADMIN)
        if account in self._members[role]:
            return False
        self._members[role].add(account)
        logger.info("Granted %s to %s", role.value, account)
        return True

    def revoke_role(self, caller: str, role: Role, account: str) -> bool:
        """Revoke ``role`` from ``account``. Returns False if it was not held."""
        require_role(self, caller, Role.ADMIN)
        if account not in self._members[role]:
            return False
        self._members[role].discard(account)
        logger.info("Revoked %s from %s", role.value, account)
        return True

    def members(self, role: Role) -> frozenset[str]:
        return frozenset(self._members[role])
