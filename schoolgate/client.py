"""
Tenant-scoped table access.

TenantScopedClient wraps a RestClient so that every read is filtered by
the current school and every write carries it. The tenant comes from
the TenantGuard on each call; there is no fallback tenant.

Invariants:
    - Every builder returned here already has the tenant filter applied
    - Insert payloads are rewritten with the current tenant
    - Calls made without a resolved tenant raise TenantUnavailableError
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from .guard import TenantGuard
from .rest import RestClient, TableQuery
from .scoped import TENANT_COLUMN, scope_insert, scope_insert_many, scope_read, scope_update

logger = logging.getLogger(__name__)


class TenantScopedClient:
    """Table client bound to the signed-in school.

    Example:
        >>> students = await scoped.select("students").eq("class_id", 3).execute()
        >>> await scoped.insert("students", {"name": "Rahim"}).execute()
    """

    def __init__(
        self,
        rest: RestClient,
        guard: TenantGuard,
        column: str = TENANT_COLUMN,
    ) -> None:
        self._rest = rest
        self._guard = guard
        self.column = column

    def select(self, table: str, columns: str = "*") -> TableQuery:
        tenant = self._guard.require_tenant()
        return scope_read(self._rest.table(table).select(columns), tenant, self.column)

    def insert(self, table: str, record: Mapping[str, Any]) -> TableQuery:
        tenant = self._guard.require_tenant()
        return self._rest.table(table).insert(scope_insert(record, tenant, self.column))

    def insert_many(self, table: str, records: List[Mapping[str, Any]]) -> TableQuery:
        tenant = self._guard.require_tenant()
        return self._rest.table(table).insert(scope_insert_many(records, tenant, self.column))

    def update(self, table: str, patch: Dict[str, Any]) -> TableQuery:
        tenant = self._guard.require_tenant()
        if self.column in patch:
            logger.warning("Dropping tenant column from update patch", extra={"table": table})
        query = self._rest.table(table).update(scope_update(patch, tenant, self.column))
        return scope_read(query, tenant, self.column)

    def delete(self, table: str) -> TableQuery:
        tenant = self._guard.require_tenant()
        return scope_read(self._rest.table(table).delete(), tenant, self.column)
