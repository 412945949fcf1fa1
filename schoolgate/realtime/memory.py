"""
In-memory realtime transport for testing.

Routes published row changes to open channels whose table and filter
match. Each delivery runs as its own task to model push events arriving
on a separate connection.

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the RealtimeTransport protocol
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from typing import Any, Dict, Optional, Set

from ..errors import SubscriptionError
from .base import Channel, ChangeEvent, EventCallback, parse_filter

logger = logging.getLogger(__name__)


class InMemoryRealtimeTransport:
    """In-memory implementation of RealtimeTransport.

    Attributes:
        max_channels: Channel budget; subscribe() fails beyond it

    Example:
        >>> transport = InMemoryRealtimeTransport()
        >>> channel = await transport.subscribe("messages:42", on_event,
        ...     table="messages", filter="conversation_id=eq.42")
        >>> transport.publish("messages", {"id": 1, "conversation_id": 42})
    """

    def __init__(self, max_channels: int = 100) -> None:
        self.max_channels = max_channels
        self._channels: Dict[str, Channel] = {}
        self._callbacks: Dict[str, EventCallback] = {}
        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    async def subscribe(
        self,
        topic: str,
        callback: EventCallback,
        *,
        table: Optional[str] = None,
        filter: Optional[str] = None,
    ) -> Channel:
        if len(self._channels) >= self.max_channels:
            raise SubscriptionError("Realtime channel budget exhausted", topic=topic)
        parse_filter(filter)

        channel = Channel(
            channel_id=f"ch-{next(self._ids)}",
            topic=topic,
            table=table,
            filter=filter,
        )
        self._channels[channel.channel_id] = channel
        self._callbacks[channel.channel_id] = callback
        logger.debug("Channel opened", extra={"topic": topic, "channel_id": channel.channel_id})
        return channel

    async def unsubscribe(self, channel: Channel) -> None:
        if self._channels.pop(channel.channel_id, None) is not None:
            self._callbacks.pop(channel.channel_id, None)
            logger.debug("Channel closed", extra={"topic": channel.topic, "channel_id": channel.channel_id})

    def publish(
        self,
        table: str,
        record: Dict[str, Any],
        event_type: str = "INSERT",
        old_record: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Deliver a row change to every matching channel.

        Returns:
            Number of channels the event was scheduled for
        """
        delivered = 0
        for channel_id, channel in list(self._channels.items()):
            if channel.table is not None and channel.table != table:
                continue
            match = parse_filter(channel.filter)
            if match is not None:
                column, value = match
                if str(record.get(column)) != value:
                    continue

            event = ChangeEvent(
                topic=channel.topic,
                table=table,
                event_type=event_type,
                record=dict(record),
                old_record=old_record,
            )
            self._schedule(self._callbacks[channel_id], event)
            delivered += 1
        return delivered

    def publish_to(self, topic: str, event_type: str = "INSERT", record: Optional[Dict[str, Any]] = None) -> int:
        """Deliver an event to every channel on a topic (testing helper)."""
        delivered = 0
        for channel_id, channel in list(self._channels.items()):
            if channel.topic != topic:
                continue
            event = ChangeEvent(topic=topic, table=channel.table or "", event_type=event_type, record=record)
            self._schedule(self._callbacks[channel_id], event)
            delivered += 1
        return delivered

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def topics(self) -> list[str]:
        return [channel.topic for channel in self._channels.values()]

    async def drain(self) -> None:
        """Wait for all scheduled deliveries (testing helper)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, callback: EventCallback, event: ChangeEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(callback, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, callback: EventCallback, event: ChangeEvent) -> None:
        result = callback(event)
        if inspect.isawaitable(result):
            await result
