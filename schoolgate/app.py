"""
SchoolGate application container.

Wires the session core together with explicit construction instead of
module-level singletons:
- SessionStore, owned by the AuthController
- TenantGuard and TenantScopedClient for data access
- QueryCache purged on identity changes
- SubscriptionManager for realtime views

Invariants:
    - One container per process or test; nothing is global
    - start() resolves the session before returning
    - close() releases subscriptions before the provider and HTTP clients

How to change safely:
    - Add new components with explicit ownership in close()
    - Test shutdown ordering when adding background tasks
"""

from __future__ import annotations

import logging
from typing import Any

from .auth import AuthController
from .cache import QueryCache
from .client import TenantScopedClient
from .config import Settings
from .conversations import ConversationService
from .guard import TenantGuard
from .identity import IdentityProvider, create_identity_provider
from .models import AuthResult
from .realtime import InMemoryRealtimeTransport, RealtimeTransport, SubscriptionManager
from .rest import RestClient
from .store import SessionStore

logger = logging.getLogger(__name__)


class SchoolGate:
    """Session core for one running application.

    Attributes:
        settings: Loaded settings
        store: Session store (read-only for everything but auth)
        auth: Auth controller
        guard: Tenant guard
        cache: Query result cache
        realtime: Subscription manager
        rest: Raw data API client
        tables: Tenant-scoped table client
        conversations: Conversation service

    Example:
        >>> async with SchoolGate(Settings()) as gate:
        ...     await gate.auth.sign_in("head@school.test", "secret")
        ...     rows = await gate.tables.select("students").execute()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: IdentityProvider | None = None,
        transport: RealtimeTransport | None = None,
        rest: RestClient | None = None,
    ) -> None:
        """Initialize the container.

        Args:
            settings: Settings (loaded from env if not provided)
            provider: Identity provider (built from settings if not provided)
            transport: Realtime transport (in-memory if not provided)
            rest: Data API client (built from settings if not provided)
        """
        self.settings = settings or Settings()
        if provider is None:
            self.settings.validate_backend()
        self.provider = provider or create_identity_provider(self.settings)

        self.store = SessionStore()
        self.cache = QueryCache()
        self.auth = AuthController(
            self.provider,
            self.store,
            self.cache,
            tenant_keys=self.settings.tenant_keys,
        )
        self.guard = TenantGuard(self.store)

        self.rest = rest or RestClient(
            self.settings.supabase_url,
            self.settings.anon_key.get_secret_value(),
            token_source=self._access_token,
            timeout=self.settings.request_timeout,
        )
        self.tables = TenantScopedClient(self.rest, self.guard, self.settings.tenant_column)

        if transport is None:
            logger.warning("No realtime transport given, events stay in process (in-memory transport)")
            transport = InMemoryRealtimeTransport()
        self.transport = transport
        self.realtime = SubscriptionManager(self.transport, self.store)
        self.conversations = ConversationService(self.tables, self.guard, self.cache, self.realtime)

        self._started = False

    async def start(self) -> AuthResult:
        """Resolve the persisted session and begin following changes."""
        if self._started:
            logger.warning("SchoolGate already started")
            return AuthResult.ok()

        self.settings.log_config()
        result = await self.auth.initialize()
        self._started = True
        logger.info("SchoolGate started", extra={"state": self.store.state.value})
        return result

    async def close(self) -> None:
        """Release subscriptions, listeners and connections."""
        await self.realtime.shutdown()
        self.auth.close()
        await self.provider.close()
        await self.rest.close()
        self._started = False
        logger.info("SchoolGate closed")

    def _access_token(self) -> str | None:
        # Data requests go out with the signed-in user's token when there is one
        return getattr(self.provider, "access_token", None)

    async def __aenter__(self) -> SchoolGate:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
