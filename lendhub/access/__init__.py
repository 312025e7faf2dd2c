"""Role-based access control."""
from .roles import RoleRegistry, require_role

__all__ = ["RoleRegistry", "require_role"]
