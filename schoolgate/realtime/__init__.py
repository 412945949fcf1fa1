"""
Realtime subscriptions for SchoolGate.

This module provides:
- RealtimeTransport protocol (the push channel is an external collaborator)
- InMemoryRealtimeTransport (for testing)
- SubscriptionManager and ResourceWatch (view-scoped subscriptions)

Invariants:
    - Events are invalidation hints, never authoritative payloads
    - Subscriptions never outlive their view or their tenant
"""

from .base import Channel, ChangeEvent, EventCallback, RealtimeTransport, parse_filter
from .manager import (
    ResourceWatch,
    SubscriptionHandle,
    SubscriptionManager,
    invalidate_on_event,
)
from .memory import InMemoryRealtimeTransport

__all__ = [
    # Protocol and types
    "RealtimeTransport",
    "Channel",
    "ChangeEvent",
    "EventCallback",
    "parse_filter",
    # Manager
    "SubscriptionManager",
    "SubscriptionHandle",
    "ResourceWatch",
    "invalidate_on_event",
    # Implementations
    "InMemoryRealtimeTransport",
]
