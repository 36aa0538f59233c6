"""Short-lived message storage used to rebuild cross-channel context."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..db import Database
from ..models.records import StoredMessage

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def message_from_row(row: Dict[str, Any]) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        author_id=row["author_id"],
        content=row["content"],
        timestamp=_as_utc(row["sent_at"]),
        reply_to_id=row.get("reply_to_id"),
        reply_to_author_id=row.get("reply_to_author_id"),
        mentioned_user_ids=list(row.get("mentions") or []),
    )


class MessageStore:
    """Keeps recent guild messages, in memory or in Postgres when connected."""

    def __init__(self, database: Optional[Database] = None):
        self._lock = asyncio.Lock()
        self._db = database
        self._messages: Dict[int, StoredMessage] = {}

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def insert(self, message: StoredMessage) -> None:
        """Store a message, replacing any earlier copy with the same id."""

        if self._uses_db:
            await self._db.upsert_message(
                message_id=message.id,
                guild_id=message.guild_id,
                channel_id=message.channel_id,
                author_id=message.author_id,
                content=message.content,
                sent_at=message.timestamp,
                reply_to_id=message.reply_to_id,
                reply_to_author_id=message.reply_to_author_id,
                mentions=message.mentioned_user_ids,
            )
            return
        async with self._lock:
            self._messages[message.id] = message.model_copy(deep=True)

    async def get(self, message_id: int) -> Optional[StoredMessage]:
        if self._uses_db:
            row = await self._db.fetch_message(message_id)
            return message_from_row(row) if row else None
        async with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    async def by_author(
        self, guild_id: int, author_id: int, since: datetime, limit: int = 50
    ) -> List[StoredMessage]:
        if self._uses_db:
            rows = await self._db.fetch_messages_by_author(guild_id, author_id, since, limit)
            return [message_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                message
                for message in self._messages.values()
                if message.guild_id == guild_id
                and message.author_id == author_id
                and message.timestamp >= since
            ]
        matches.sort(key=lambda m: m.timestamp, reverse=True)
        return [message.model_copy(deep=True) for message in matches[:limit]]

    async def by_channel(
        self, channel_id: int, since: datetime, limit: int = 50
    ) -> List[StoredMessage]:
        if self._uses_db:
            rows = await self._db.fetch_messages_by_channel(channel_id, since, limit)
            return [message_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                message
                for message in self._messages.values()
                if message.channel_id == channel_id and message.timestamp >= since
            ]
        matches.sort(key=lambda m: m.timestamp, reverse=True)
        return [message.model_copy(deep=True) for message in matches[:limit]]

    async def context_between(
        self,
        guild_id: int,
        user_a_id: int,
        user_b_id: int,
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[StoredMessage]:
        """Messages in the guild authored by or mentioning either user, oldest first."""

        if self._uses_db:
            rows = await self._db.fetch_context_messages(
                guild_id, user_a_id, user_b_id, since, until, limit
            )
            return [message_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                message
                for message in self._messages.values()
                if message.guild_id == guild_id
                and message.timestamp >= since
                and (until is None or message.timestamp <= until)
                and (message.involves(user_a_id) or message.involves(user_b_id))
            ]
        matches.sort(key=lambda m: (m.timestamp, m.id))
        return [message.model_copy(deep=True) for message in matches[:limit]]

    async def delete_older_than(self, cutoff: datetime) -> int:
        if self._uses_db:
            removed = await self._db.delete_messages_older_than(cutoff)
        else:
            async with self._lock:
                expired = [
                    message_id
                    for message_id, message in self._messages.items()
                    if message.timestamp < cutoff
                ]
                for message_id in expired:
                    del self._messages[message_id]
                removed = len(expired)
        if removed:
            logger.info("Removed %s messages older than %s", removed, cutoff.isoformat())
        return removed
