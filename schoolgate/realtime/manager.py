"""
Realtime subscription manager.

Opens and closes topic subscriptions on behalf of views (one per active
resource, e.g. a conversation) and turns inbound events into cache
invalidation. Events are hints to re-fetch, never authoritative data.

Duplicate policy: at most one open handle per (owner, topic). A second
open() for the same pair replaces the first; the earlier handle is
closed before the new channel is opened.

Invariants:
    - Every handle opened is closed exactly once, on every exit path
    - Events arriving for a closed handle are dropped
    - Subscriptions require a resolved tenant and are all closed when
      the tenant changes or the session ends
    - Consumer callback failures never reach the transport

How to change safely:
    - Keep close() idempotent; teardown paths call it liberally
    - Test both replacement and owner teardown when touching open()
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Hashable, List, Optional, Set, Tuple

from ..cache import CacheKey, QueryCache
from ..errors import SubscriptionError, TenantUnavailableError
from ..models import SessionSnapshot
from ..store import SessionStore
from .base import Channel, ChangeEvent, EventCallback, RealtimeTransport

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "app"


@dataclass
class SubscriptionHandle:
    """An open subscription held by a view.

    Attributes:
        handle_id: Manager-assigned ID
        topic: Topic name
        owner: View or component that opened it
        tenant: Tenant the subscription was opened under
        channel: Underlying transport channel
        closed: Whether close() has run
    """

    handle_id: int
    topic: str
    owner: Hashable
    tenant: int
    channel: Channel | None = None
    closed: bool = False


class SubscriptionManager:
    """Manages realtime subscriptions for views.

    Example:
        >>> manager = SubscriptionManager(transport, store)
        >>> async with manager.subscription("messages:42", on_event,
        ...         table="messages", filter="conversation_id=eq.42",
        ...         owner="chat-view"):
        ...     await render()
    """

    def __init__(self, transport: RealtimeTransport, store: SessionStore) -> None:
        self._transport = transport
        self._store = store
        self._handles: Dict[Tuple[Hashable, str], SubscriptionHandle] = {}
        self._ids = itertools.count(1)
        self._tenant = store.tenant
        self._closed = False
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe_store = store.subscribe(self._on_session_change)

    async def open(
        self,
        topic: str,
        on_event: EventCallback,
        *,
        table: Optional[str] = None,
        filter: Optional[str] = None,
        owner: Hashable = DEFAULT_OWNER,
    ) -> SubscriptionHandle:
        """Open a subscription.

        Args:
            topic: Topic name, e.g. ``messages:42``
            on_event: Sync or async callback for each event
            table: Table whose changes to receive
            filter: Row filter such as ``conversation_id=eq.42``
            owner: View holding the subscription

        Returns:
            Handle to pass to close()

        Raises:
            TenantUnavailableError: If no tenant is resolved
            SubscriptionError: If the manager is shut down or the
                transport refuses the channel
        """
        if self._closed:
            raise SubscriptionError("Subscription manager is shut down", topic=topic)
        tenant = self._store.tenant
        if tenant is None:
            raise TenantUnavailableError(f"Cannot subscribe to {topic} without school_id")

        key = (owner, topic)
        existing = self._handles.get(key)
        if existing is not None:
            logger.info("Replacing open subscription", extra={"topic": topic, "handle_id": existing.handle_id})
            await self.close(existing)

        handle = SubscriptionHandle(handle_id=next(self._ids), topic=topic, owner=owner, tenant=tenant)

        async def dispatch(event: ChangeEvent) -> None:
            await self._dispatch(handle, on_event, event)

        handle.channel = await self._transport.subscribe(topic, dispatch, table=table, filter=filter)

        # The session may have moved on while the transport was subscribing
        if self._closed or self._store.tenant != tenant:
            handle.closed = True
            await self._transport.unsubscribe(handle.channel)
            logger.info("Discarding subscription opened for a stale tenant", extra={"topic": topic})
            if self._closed:
                raise SubscriptionError("Subscription manager is shut down", topic=topic)
            raise TenantUnavailableError(f"School changed while subscribing to {topic}")

        # Another open() for the same key may have finished while we awaited
        raced = self._handles.get(key)
        if raced is not None:
            await self.close(raced)
        self._handles[key] = handle

        logger.debug(
            "Subscription opened",
            extra={"topic": topic, "handle_id": handle.handle_id, "open_count": len(self._handles)},
        )
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Close a subscription. Safe to call more than once."""
        if handle.closed:
            return
        handle.closed = True

        key = (handle.owner, handle.topic)
        if self._handles.get(key) is handle:
            del self._handles[key]

        if handle.channel is not None:
            await self._transport.unsubscribe(handle.channel)
        logger.debug("Subscription closed", extra={"topic": handle.topic, "handle_id": handle.handle_id})

    async def close_owner(self, owner: Hashable) -> int:
        """Close every subscription held by owner.

        Returns:
            Number of subscriptions closed
        """
        handles = [h for (o, _), h in self._handles.items() if o == owner]
        for handle in handles:
            await self.close(handle)
        return len(handles)

    async def close_all(self) -> int:
        """Close every open subscription."""
        handles = list(self._handles.values())
        for handle in handles:
            await self.close(handle)
        if handles:
            logger.info("Closed all subscriptions", extra={"count": len(handles)})
        return len(handles)

    async def shutdown(self) -> None:
        """Close everything and stop following the session."""
        self._closed = True
        self._unsubscribe_store()
        await self.close_all()
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @asynccontextmanager
    async def subscription(
        self,
        topic: str,
        on_event: EventCallback,
        *,
        table: Optional[str] = None,
        filter: Optional[str] = None,
        owner: Hashable = DEFAULT_OWNER,
    ) -> AsyncIterator[SubscriptionHandle]:
        """Hold a subscription for the duration of a block."""
        handle = await self.open(topic, on_event, table=table, filter=filter, owner=owner)
        try:
            yield handle
        finally:
            await self.close(handle)

    def watch(
        self,
        owner: Hashable,
        topic_for: Callable[[Any], str],
        on_event: EventCallback,
        *,
        table: Optional[str] = None,
        filter_for: Optional[Callable[[Any], str]] = None,
    ) -> ResourceWatch:
        """Create a watch that follows a changing resource ID."""
        return ResourceWatch(self, owner, topic_for, on_event, table=table, filter_for=filter_for)

    def active_topics(self, owner: Hashable | None = None) -> List[str]:
        return [topic for (o, topic) in self._handles if owner is None or o == owner]

    def __len__(self) -> int:
        return len(self._handles)

    async def _dispatch(self, handle: SubscriptionHandle, on_event: EventCallback, event: ChangeEvent) -> None:
        if handle.closed:
            logger.debug("Dropping event for closed subscription", extra={"topic": handle.topic})
            return
        try:
            result = on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Realtime event handler failed", extra={"topic": handle.topic})

    def _on_session_change(self, snapshot: SessionSnapshot) -> None:
        if snapshot.tenant == self._tenant:
            return
        self._tenant = snapshot.tenant
        if not self._handles:
            return

        logger.info("Tenant changed, closing subscriptions", extra={"count": len(self._handles)})
        # Mark closed now so no event from the old tenant is delivered
        for handle in self._handles.values():
            handle.closed = True
        stale = list(self._handles.values())
        self._handles.clear()

        task = asyncio.get_running_loop().create_task(self._release(stale))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _release(self, handles: List[SubscriptionHandle]) -> None:
        for handle in handles:
            if handle.channel is not None:
                await self._transport.unsubscribe(handle.channel)


class ResourceWatch:
    """Subscription that follows a view's current resource ID.

    Switching the resource closes the old topic before opening the new
    one; setting None or stopping closes it.

    Example:
        >>> watch = manager.watch("chat-view", lambda cid: f"messages:{cid}", on_event,
        ...     table="messages", filter_for=lambda cid: f"conversation_id=eq.{cid}")
        >>> async with watch:
        ...     await watch.set_resource(42)
        ...     await watch.set_resource(43)
    """

    def __init__(
        self,
        manager: SubscriptionManager,
        owner: Hashable,
        topic_for: Callable[[Any], str],
        on_event: EventCallback,
        *,
        table: Optional[str] = None,
        filter_for: Optional[Callable[[Any], str]] = None,
    ) -> None:
        self._manager = manager
        self._owner = owner
        self._topic_for = topic_for
        self._on_event = on_event
        self._table = table
        self._filter_for = filter_for
        self.resource_id: Any = None
        self.handle: SubscriptionHandle | None = None

    async def set_resource(self, resource_id: Any) -> None:
        """Point the watch at a new resource (None to detach)."""
        if resource_id == self.resource_id and self.handle is not None and not self.handle.closed:
            return

        if self.handle is not None:
            await self._manager.close(self.handle)
            self.handle = None
        self.resource_id = resource_id

        if resource_id is None:
            return
        self.handle = await self._manager.open(
            self._topic_for(resource_id),
            self._on_event,
            table=self._table,
            filter=self._filter_for(resource_id) if self._filter_for else None,
            owner=self._owner,
        )

    async def stop(self) -> None:
        await self.set_resource(None)

    async def __aenter__(self) -> ResourceWatch:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()


def invalidate_on_event(cache: QueryCache, *keys: CacheKey) -> Callable[[ChangeEvent], None]:
    """Build an on_event callback that invalidates cache key prefixes.

    Args:
        cache: Query cache to invalidate
        *keys: Key prefixes, e.g. ("messages", 42), ("conversations",)
    """

    def on_event(event: ChangeEvent) -> None:
        logger.debug(
            "Realtime change, invalidating",
            extra={"topic": event.topic, "event_type": event.event_type},
        )
        for key in keys:
            cache.invalidate(*key)

    return on_event
