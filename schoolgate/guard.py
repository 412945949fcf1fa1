"""
Tenant guard: the single choke point for reading the current tenant.

Every data-access call site obtains the school ID through this guard
instead of reading the SessionStore directly, so "no silent defaulting"
is enforced in one auditable place.

Invariants:
    - require_tenant() raises iff the store's tenant is None
    - Neither accessor ever returns a default tenant
"""

from __future__ import annotations

from .errors import TenantUnavailableError
from .store import SessionStore


class TenantGuard:
    """Read-only accessor for the current tenant.

    Example:
        >>> guard = TenantGuard(store)
        >>> school_id = guard.require_tenant()
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def require_tenant(self) -> int:
        """Return the current tenant ID.

        Raises:
            TenantUnavailableError: If no tenant is resolved
        """
        snapshot = self._store.snapshot
        if snapshot.tenant is None:
            raise TenantUnavailableError(
                principal_id=snapshot.principal.id if snapshot.principal else None,
            )
        return snapshot.tenant

    def tenant_or_none(self) -> int | None:
        """Return the current tenant ID, or None when not yet available.

        For call sites that defer work until ready (e.g. disabling a query).
        """
        return self._store.tenant

    @property
    def is_ready(self) -> bool:
        return self._store.ready
