"""
Base protocol and types for realtime transports.

A transport is an opaque publish/subscribe channel keyed by a topic
string. Events carry "a row changed" and nothing the consumer may rely
on beyond that: delivery is at-least-once and unordered relative to
local mutations.

Invariants:
    - unsubscribe() is idempotent
    - Callbacks are invoked asynchronously, never inline with publish
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable


@dataclass(frozen=True)
class ChangeEvent:
    """A row-changed notification.

    Attributes:
        topic: Topic the event was delivered on
        table: Table whose row changed
        event_type: INSERT, UPDATE or DELETE
        record: New row, if the transport sent one
        old_record: Previous row, if the transport sent one
    """

    topic: str
    table: str
    event_type: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


EventCallback = Callable[[ChangeEvent], Union[Awaitable[None], None]]


@dataclass
class Channel:
    """A transport-level subscription.

    Attributes:
        channel_id: Transport-assigned ID
        topic: Topic name
        table: Table filter, if any
        filter: Row filter such as ``conversation_id=eq.42``
    """

    channel_id: str
    topic: str
    table: Optional[str] = None
    filter: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class RealtimeTransport(Protocol):
    """Protocol for realtime push transports."""

    @abstractmethod
    async def subscribe(
        self,
        topic: str,
        callback: EventCallback,
        *,
        table: Optional[str] = None,
        filter: Optional[str] = None,
    ) -> Channel:
        """Open a channel and deliver matching events to callback.

        Raises:
            SubscriptionError: If the transport refuses the channel
        """
        ...

    @abstractmethod
    async def unsubscribe(self, channel: Channel) -> None:
        """Close a channel. Unknown or closed channels are ignored."""
        ...


def parse_filter(expression: Optional[str]) -> Optional[tuple[str, str]]:
    """Parse a ``column=eq.value`` row filter.

    Returns:
        (column, value) or None for an empty filter

    Raises:
        ValueError: If the expression is not an equality filter
    """
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    if not sep or not rest.startswith("eq."):
        raise ValueError(f"Unsupported realtime filter: {expression!r}")
    return column, rest[len("eq."):]
