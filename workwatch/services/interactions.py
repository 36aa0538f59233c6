"""Mention and reply counters between pairs of users."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..db import Database
from ..models.records import Interaction
from .messages import _as_utc

MAX_CONTEXT_CHAIN = 10

PairKey = Tuple[int, int, int]


def _pair_key(guild_id: int, user_a_id: int, user_b_id: int) -> PairKey:
    low, high = sorted((user_a_id, user_b_id))
    return (guild_id, low, high)


def merge_context_chain(existing: Iterable[int], channel_ids: Iterable[int]) -> List[int]:
    """Append channels, keeping each once with the most recent last."""

    chain = list(existing)
    for channel_id in channel_ids:
        if channel_id in chain:
            chain.remove(channel_id)
        chain.append(channel_id)
    return chain[-MAX_CONTEXT_CHAIN:]


def interaction_from_row(row: Dict[str, Any]) -> Interaction:
    return Interaction(
        guild_id=row["guild_id"],
        user_a_id=row["user_a_id"],
        user_b_id=row["user_b_id"],
        last_interaction_at=_as_utc(row["last_interaction_at"]),
        interaction_count=row["interaction_count"],
        context_chain=list(row.get("context_chain") or []),
    )


class InteractionStore:
    """Order-insensitive interaction counters, in memory or in Postgres."""

    def __init__(self, database: Optional[Database] = None):
        self._lock = asyncio.Lock()
        self._db = database
        self._interactions: Dict[PairKey, Interaction] = {}

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def record(
        self,
        guild_id: int,
        user_a_id: int,
        user_b_id: int,
        timestamp: datetime,
        channel_ids: Iterable[int],
    ) -> Optional[Interaction]:
        if user_a_id == user_b_id:
            return None
        key = _pair_key(guild_id, user_a_id, user_b_id)
        channel_ids = list(channel_ids)
        async with self._lock:
            if self._uses_db:
                row = await self._db.fetch_interaction(*key)
                existing = interaction_from_row(row) if row else None
            else:
                existing = self._interactions.get(key)

            if existing is None:
                interaction = Interaction(
                    guild_id=guild_id,
                    user_a_id=key[1],
                    user_b_id=key[2],
                    last_interaction_at=timestamp,
                    interaction_count=1,
                    context_chain=merge_context_chain([], channel_ids),
                )
            else:
                interaction = existing.model_copy(
                    update={
                        "last_interaction_at": max(existing.last_interaction_at, timestamp),
                        "interaction_count": existing.interaction_count + 1,
                        "context_chain": merge_context_chain(
                            existing.context_chain, channel_ids
                        ),
                    }
                )

            if self._uses_db:
                await self._db.upsert_interaction(
                    guild_id=guild_id,
                    user_a_id=key[1],
                    user_b_id=key[2],
                    timestamp=timestamp,
                    context_chain=interaction.context_chain,
                )
            else:
                self._interactions[key] = interaction
            return interaction.model_copy(deep=True)

    async def get(self, guild_id: int, user_a_id: int, user_b_id: int) -> Optional[Interaction]:
        key = _pair_key(guild_id, user_a_id, user_b_id)
        if self._uses_db:
            row = await self._db.fetch_interaction(*key)
            return interaction_from_row(row) if row else None
        async with self._lock:
            interaction = self._interactions.get(key)
            return interaction.model_copy(deep=True) if interaction else None

    async def for_user(self, guild_id: int, user_id: int, since: datetime) -> List[Interaction]:
        if self._uses_db:
            rows = await self._db.fetch_interactions_for_user(guild_id, user_id, since)
            return [interaction_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                interaction
                for interaction in self._interactions.values()
                if interaction.guild_id == guild_id
                and user_id in (interaction.user_a_id, interaction.user_b_id)
                and interaction.last_interaction_at >= since
            ]
        matches.sort(key=lambda i: i.last_interaction_at, reverse=True)
        return [interaction.model_copy(deep=True) for interaction in matches]
