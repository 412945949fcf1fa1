"""
Tenant-scoped query helpers.

Pure functions that constrain outgoing reads and writes to one school.
The tenant is always an explicit argument, obtained by the caller from
the TenantGuard, so these helpers can be tested without a live session.

Invariants:
    - Write payloads always carry the caller's tenant, overriding any
      value the record already had
    - Update patches can never move a row to another tenant
    - A None tenant raises TenantUnavailableError
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Protocol, TypeVar

from .errors import TenantUnavailableError

TENANT_COLUMN = "school_id"

F = TypeVar("F", bound="FilterBuilder")


class FilterBuilder(Protocol):
    """Anything that accepts an equality filter and returns a builder."""

    def eq(self: F, column: str, value: Any) -> F:
        ...


def _check(tenant: int | None, action: str) -> int:
    if tenant is None:
        raise TenantUnavailableError(f"Cannot {action} without school_id")
    return tenant


def scope_read(filter_builder: F, tenant: int | None, column: str = TENANT_COLUMN) -> F:
    """Add a tenant equality filter to an outgoing read.

    Args:
        filter_builder: Query builder exposing eq()
        tenant: Current tenant ID
        column: Tenant column name

    Returns:
        The builder returned by eq()

    Raises:
        TenantUnavailableError: If tenant is None
    """
    return filter_builder.eq(column, _check(tenant, "query"))


def scope_insert(
    record: Mapping[str, Any],
    tenant: int | None,
    column: str = TENANT_COLUMN,
) -> Dict[str, Any]:
    """Return a shallow copy of record with the tenant column set.

    Example:
        >>> scope_insert({"school_id": 999, "name": "x"}, 5)
        {'school_id': 5, 'name': 'x'}
    """
    scoped = dict(record)
    scoped[column] = _check(tenant, "insert")
    return scoped


def scope_insert_many(
    records: Iterable[Mapping[str, Any]],
    tenant: int | None,
    column: str = TENANT_COLUMN,
) -> List[Dict[str, Any]]:
    """Apply scope_insert() to every record."""
    tenant = _check(tenant, "insert batch")
    return [scope_insert(record, tenant, column) for record in records]


def scope_update(
    patch: Mapping[str, Any],
    tenant: int | None,
    column: str = TENANT_COLUMN,
) -> Dict[str, Any]:
    """Return a shallow copy of patch without the tenant column.

    Rows are assigned a tenant at creation and never reassigned, so an
    update patch may not touch the tenant column. Pair with scope_read()
    on the update's filter.
    """
    _check(tenant, "update")
    return {key: value for key, value in patch.items() if key != column}
