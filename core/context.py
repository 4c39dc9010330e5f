"""
Request context carried into every tenant-scoped operation.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple


@dataclass(frozen=True)
class RequestHeader:
    """Tenant and caller identity for one unit of work.

    Repositories refuse to be constructed without one, so every query
    they issue is bound to ``tenant_id``.
    """
    tenant_id: str
    user_id: Optional[str] = None
    permissions: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("RequestHeader requires a tenant_id")
        if not isinstance(self.permissions, tuple):
            object.__setattr__(self, 'permissions', tuple(self.permissions))

    @classmethod
    def system(cls, tenant_id: str) -> "RequestHeader":
        """Context used by sweeps and queue jobs acting on behalf of a tenant."""
        return cls(tenant_id=tenant_id)

    @classmethod
    def from_values(
        cls,
        tenant_id: str,
        user_id: Optional[str],
        permissions: Optional[Iterable[str]] = None
    ) -> "RequestHeader":
        return cls(
            tenant_id=tenant_id,
            user_id=user_id,
            permissions=tuple(p for p in (permissions or ()) if p)
        )

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions
