"""
Session store: the single shared view of who is signed in.

The store holds one immutable SessionSnapshot. Readers (guard, views,
realtime manager) observe it; exactly one writer (the AuthController)
replaces it.

Invariants:
    - Readiness is computed from the snapshot, never stored
    - Every write replaces the whole snapshot (no per-field patching)
    - Only the holder of the SessionWriter can mutate the store

How to change safely:
    - Never add a setter on SessionStore itself
    - Listener exceptions must not stop delivery to other listeners
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .errors import SessionWriterError
from .models import Principal, SessionSnapshot, SessionState

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionSnapshot], None]


class SessionStore:
    """Reactive holder of the current session snapshot.

    Example:
        >>> store = SessionStore()
        >>> writer = store.bind_writer()
        >>> unsubscribe = store.subscribe(lambda snap: print(snap.state))
        >>> _ = writer.clear()
        SessionState.EMPTY
    """

    def __init__(self) -> None:
        self._snapshot = SessionSnapshot.unresolved()
        self._listeners: list[SessionListener] = []
        self._writer: SessionWriter | None = None
        self._resolved = asyncio.Event()

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def principal(self) -> Principal | None:
        return self._snapshot.principal

    @property
    def tenant(self) -> int | None:
        return self._snapshot.tenant

    @property
    def ready(self) -> bool:
        return self._snapshot.ready

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    def bind_writer(self) -> SessionWriter:
        """Claim the write handle for this store.

        Returns:
            The one SessionWriter for this store

        Raises:
            SessionWriterError: If a writer is already bound
        """
        if self._writer is not None:
            raise SessionWriterError()
        self._writer = SessionWriter(self)
        return self._writer

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener called with every new snapshot.

        Args:
            listener: Callable receiving the new snapshot

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_until_resolved(self, timeout: float | None = None) -> SessionSnapshot:
        """Wait for the first identity resolution.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Returns:
            The snapshot at the time resolution was observed

        Raises:
            asyncio.TimeoutError: If resolution does not happen in time
        """
        await asyncio.wait_for(self._resolved.wait(), timeout=timeout)
        return self._snapshot

    def _publish(self, snapshot: SessionSnapshot) -> None:
        previous = self._snapshot
        self._snapshot = snapshot
        if snapshot.resolved:
            self._resolved.set()

        if previous.state != snapshot.state:
            logger.info(
                "Session state changed",
                extra={
                    "from_state": previous.state.value,
                    "to_state": snapshot.state.value,
                    "tenant": snapshot.tenant,
                },
            )

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")


class SessionWriter:
    """Write handle for a SessionStore.

    Obtained once via SessionStore.bind_writer().
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def replace(self, principal: Principal | None, tenant: int | None) -> SessionSnapshot:
        """Replace the whole session with a freshly resolved one.

        Args:
            principal: Signed-in principal, or None
            tenant: Tenant derived from that principal, or None

        Returns:
            The published snapshot
        """
        if principal is None:
            tenant = None
        snapshot = SessionSnapshot(principal=principal, tenant=tenant, resolved=True)
        self._store._publish(snapshot)
        return snapshot

    def clear(self) -> SessionSnapshot:
        """Reset to the Empty state."""
        snapshot = SessionSnapshot.empty()
        self._store._publish(snapshot)
        return snapshot
