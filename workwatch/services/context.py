"""Cross-channel context reconstruction between two users.

A manager may point out a mistake in one channel and follow up in another.
Looking at a single channel makes that follow-up read like an unprovoked
attack, so the analyzer is given every recent message in the guild that was
written by, or mentions, either of the two users involved.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..models.config import WatchSettings
from ..models.records import StoredMessage
from .messages import MessageStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime) -> str:
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


class NameDirectory:
    """Channel and user display names, refreshed by the chat binding."""

    def __init__(self):
        self._channels: Dict[int, str] = {}
        self._users: Dict[int, str] = {}

    def set_channel_name(self, channel_id: int, name: str) -> None:
        self._channels[channel_id] = name

    def set_user_name(self, user_id: int, name: str) -> None:
        self._users[user_id] = name

    def channel_name(self, channel_id: int) -> Optional[str]:
        return self._channels.get(channel_id)

    def user_name(self, user_id: int) -> Optional[str]:
        return self._users.get(user_id)

    def channel_label(self, channel_id: int) -> str:
        return self._channels.get(channel_id) or str(channel_id)

    def user_label(self, user_id: int) -> str:
        return self._users.get(user_id) or str(user_id)

    def user_labels(self) -> Dict[int, str]:
        return dict(self._users)


@dataclass
class ContextEntry:
    message_id: int
    channel_id: int
    author_id: int
    content: str
    timestamp: datetime
    is_reply: bool
    is_mention: bool
    mentioned_user_ids: List[int] = field(default_factory=list)
    channel_label: Optional[str] = None
    author_label: Optional[str] = None


@dataclass
class ContextChain:
    trigger_message: ContextEntry
    context_messages: List[ContextEntry]
    involved_users: List[int]
    time_span_minutes: int


class ContextBuilder:
    """Builds the evidence bundle handed to the analyzer for a triggered message."""

    def __init__(
        self,
        messages: MessageStore,
        names: NameDirectory,
        settings: WatchSettings,
        clock: Optional[Clock] = None,
    ):
        self._messages = messages
        self._names = names
        self._settings = settings
        self._clock = clock or utc_now

    def _entry(self, message: StoredMessage) -> ContextEntry:
        return ContextEntry(
            message_id=message.id,
            channel_id=message.channel_id,
            channel_label=self._names.channel_name(message.channel_id),
            author_id=message.author_id,
            author_label=self._names.user_name(message.author_id),
            content=message.content,
            timestamp=message.timestamp,
            is_reply=message.reply_to_id is not None,
            is_mention=bool(message.mentioned_user_ids),
            mentioned_user_ids=list(message.mentioned_user_ids),
        )

    async def build(
        self,
        guild_id: int,
        trigger_message_id: int,
        author_id: int,
        target_user_id: int,
        window_hours: Optional[int] = None,
        max_messages: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ContextChain]:
        """Collect the conversation between ``author_id`` and ``target_user_id``.

        Returns ``None`` when the trigger message is unknown or when nothing
        involving either user falls inside the window.
        """

        trigger = await self._messages.get(trigger_message_id)
        if trigger is None:
            logger.warning("Trigger message %s not found in message store", trigger_message_id)
            return None

        now = now or self._clock()
        hours = window_hours if window_hours is not None else self._settings.context_window_hours
        limit = max_messages if max_messages is not None else self._settings.context_max_messages
        since = now - timedelta(hours=hours)
        # The trigger carries Discord's timestamp, which may run ahead of the local clock.
        until = max(now, trigger.timestamp)

        messages = await self._messages.context_between(
            guild_id, author_id, target_user_id, since=since, until=until, limit=limit
        )
        if not messages:
            logger.debug(
                "No context messages between %s and %s in guild %s", author_id, target_user_id, guild_id
            )
            return None

        entries = [self._entry(message) for message in messages]
        earliest = min(entry.timestamp for entry in entries)
        latest = max([entry.timestamp for entry in entries] + [trigger.timestamp])
        span_minutes = math.floor((latest - earliest).total_seconds() / 60 + 0.5)

        involved: List[int] = []
        for entry in entries:
            for user_id in [entry.author_id, *entry.mentioned_user_ids]:
                if user_id not in involved:
                    involved.append(user_id)

        return ContextChain(
            trigger_message=self._entry(trigger),
            context_messages=entries,
            involved_users=involved,
            time_span_minutes=span_minutes,
        )

    def format_for_analysis(self, chain: ContextChain) -> str:
        lines = [
            "=== Cross-Channel Context ===",
            f"Time span: {chain.time_span_minutes} minutes",
            f"Users involved: {len(chain.involved_users)}",
            "",
            "--- Conversation History ---",
        ]
        for entry in chain.context_messages:
            channel = entry.channel_label or str(entry.channel_id)
            author = entry.author_label or str(entry.author_id)
            reply = " (reply)" if entry.is_reply else ""
            mentions = ""
            if entry.mentioned_user_ids:
                labels = ", @".join(self._names.user_label(uid) for uid in entry.mentioned_user_ids)
                mentions = f" [@{labels}]"
            lines.append(f"[{iso_timestamp(entry.timestamp)}] #{channel} | {author}{reply}{mentions}:")
            lines.append(f"  {entry.content}")
            lines.append("")

        trigger = chain.trigger_message
        lines.append("--- Message Being Analyzed ---")
        lines.append(
            f"[{iso_timestamp(trigger.timestamp)}] "
            f"#{trigger.channel_label or trigger.channel_id} | {trigger.author_label or trigger.author_id}:"
        )
        lines.append(f"  {trigger.content}")
        return "\n".join(lines)
