"""
Tenant extraction from principal metadata.

The tenant (school) identifier is never stored on its own by the client.
It is always re-derived from the principal's attribute bag so that a
cached value cannot outlive a revoked or switched identity.

Invariants:
    - Missing or malformed tenant attributes yield None, never a default
    - Keys are probed in order, first non-empty value wins
    - Pure function: no I/O, only logging
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .models import Principal

logger = logging.getLogger(__name__)

# Provider naming drifted between snake and camel case over time
DEFAULT_TENANT_KEYS: tuple[str, ...] = ("school_id", "schoolId")


def coerce_tenant(value: Any) -> int | None:
    """Coerce a raw attribute value to a tenant ID.

    Args:
        value: Raw value from the attribute bag

    Returns:
        Integer tenant ID, or None if the value is not an integer
        or integer-formatted string
    """
    # bool is an int subclass; True must not become school 1
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return None
    return None


def extract_tenant(
    principal: Principal | None,
    keys: Sequence[str] = DEFAULT_TENANT_KEYS,
) -> int | None:
    """Resolve a principal to its tenant ID.

    Args:
        principal: The signed-in principal, or None
        keys: Ordered attribute keys to probe

    Returns:
        Tenant ID, or None if the principal is absent, carries no tenant
        attribute, or the attribute cannot be coerced

    Example:
        >>> extract_tenant(Principal(id="u1", metadata={"school_id": "7"}))
        7
        >>> extract_tenant(Principal(id="u2")) is None
        True
    """
    if principal is None:
        return None

    for key in keys:
        raw = principal.metadata.get(key)
        if raw is None or raw == "":
            continue

        tenant = coerce_tenant(raw)
        if tenant is None:
            logger.warning(
                "Ignoring malformed tenant attribute",
                extra={"principal_id": principal.id, "key": key},
            )
            return None
        return tenant

    logger.debug("Principal has no tenant attribute", extra={"principal_id": principal.id})
    return None
