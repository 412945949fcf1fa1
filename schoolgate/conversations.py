"""
Parent-teacher conversations over the tenant-scoped client.

Conversations and messages are ordinary business tables carrying
``school_id``. They are the canonical realtime consumer: a chat view
watches ``messages:<conversation_id>`` and re-fetches on every event.

Conversation.last_message_at is a denormalization bumped when a message
is sent. It is eventually consistent and only used for ordering; the
authoritative latest message is always re-queried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, List, Optional

from .cache import QueryCache
from .client import TenantScopedClient
from .guard import TenantGuard
from .realtime import ResourceWatch, SubscriptionManager, invalidate_on_event

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"


def message_topic(conversation_id: int) -> str:
    return f"{MESSAGES}:{conversation_id}"


@dataclass
class Conversation:
    """A conversation thread.

    Attributes:
        id: Conversation ID
        school_id: Owning tenant
        title: Optional subject line
        participant_ids: User IDs taking part
        participant_types: Role label per participant (parent, teacher)
        is_active: Whether the thread is open
        last_message_at: ISO timestamp of the latest message, if any
    """

    id: int
    school_id: int
    title: Optional[str] = None
    participant_ids: List[Any] = field(default_factory=list)
    participant_types: List[str] = field(default_factory=list)
    is_active: bool = True
    last_message_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Conversation:
        return cls(
            id=row["id"],
            school_id=row["school_id"],
            title=row.get("title"),
            participant_ids=list(row.get("participant_ids") or []),
            participant_types=list(row.get("participant_types") or []),
            is_active=row.get("is_active", True),
            last_message_at=row.get("last_message_at"),
        )


@dataclass
class Message:
    """A message in one conversation."""

    id: int
    conversation_id: int
    school_id: int
    sender_id: Any
    sender_type: str
    message: str
    created_at: Optional[str] = None
    is_read: bool = False
    attachments: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Message:
        return cls(
            id=row["id"],
            conversation_id=row["conversation_id"],
            school_id=row["school_id"],
            sender_id=row.get("sender_id"),
            sender_type=row.get("sender_type", ""),
            message=row.get("message", ""),
            created_at=row.get("created_at"),
            is_read=row.get("is_read", False),
            attachments=row.get("attachments"),
        )


class ConversationService:
    """Reads, writes and live-updates conversations for the current school."""

    def __init__(
        self,
        client: TenantScopedClient,
        guard: TenantGuard,
        cache: QueryCache,
        realtime: SubscriptionManager,
    ) -> None:
        self._client = client
        self._guard = guard
        self._cache = cache
        self._realtime = realtime

    async def list_conversations(self) -> List[Conversation]:
        """Active conversations, most recently active first."""
        tenant = self._guard.require_tenant()

        async def load() -> List[Conversation]:
            rows = await (
                self._client.select(CONVERSATIONS)
                .eq("is_active", True)
                .order("last_message_at", desc=True)
                .execute()
            )
            return [Conversation.from_row(row) for row in rows]

        return await self._cache.fetch((CONVERSATIONS, tenant), load)

    async def list_messages(self, conversation_id: int) -> List[Message]:
        """Messages of one conversation, oldest first."""
        tenant = self._guard.require_tenant()

        async def load() -> List[Message]:
            rows = await (
                self._client.select(MESSAGES)
                .eq("conversation_id", conversation_id)
                .order("created_at")
                .execute()
            )
            return [Message.from_row(row) for row in rows]

        return await self._cache.fetch((MESSAGES, conversation_id, tenant), load)

    async def latest_message(self, conversation_id: int) -> Optional[Message]:
        """Re-query the newest message instead of trusting last_message_at."""
        rows = await (
            self._client.select(MESSAGES)
            .eq("conversation_id", conversation_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return Message.from_row(rows[0]) if rows else None

    async def start_conversation(
        self,
        participant_ids: List[Any],
        participant_types: List[str],
        title: Optional[str] = None,
    ) -> Conversation:
        row = await (
            self._client.insert(
                CONVERSATIONS,
                {
                    "title": title,
                    "participant_ids": participant_ids,
                    "participant_types": participant_types,
                    "is_active": True,
                },
            )
            .single()
            .execute()
        )
        self._cache.invalidate(CONVERSATIONS)
        return Conversation.from_row(row)

    async def send_message(
        self,
        conversation_id: int,
        sender_id: Any,
        sender_type: str,
        text: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> Message:
        """Insert a message and bump the conversation's last_message_at."""
        row = await (
            self._client.insert(
                MESSAGES,
                {
                    "conversation_id": conversation_id,
                    "sender_id": sender_id,
                    "sender_type": sender_type,
                    "message": text,
                    "attachments": attachments,
                    "is_read": False,
                },
            )
            .single()
            .execute()
        )

        now = datetime.now(timezone.utc).isoformat()
        await self._client.update(CONVERSATIONS, {"last_message_at": now}).eq("id", conversation_id).execute()

        self._cache.invalidate(MESSAGES, conversation_id)
        self._cache.invalidate(CONVERSATIONS)
        return Message.from_row(row)

    def watch(self, owner: Hashable) -> ResourceWatch:
        """Live updates for whichever conversation the view has selected."""
        on_event = invalidate_on_event(self._cache, (MESSAGES,), (CONVERSATIONS,))
        return self._realtime.watch(
            owner,
            message_topic,
            on_event,
            table=MESSAGES,
            filter_for=lambda conversation_id: f"conversation_id=eq.{conversation_id}",
        )
