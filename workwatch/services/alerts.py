"""Alert bookkeeping for notification dedup and cooldown."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..db import Database
from ..models.records import AlertRecord
from .messages import _as_utc


def alert_from_row(row: Dict[str, Any]) -> AlertRecord:
    return AlertRecord(
        message_id=row["message_id"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        author_id=row["author_id"],
        alerted_at=_as_utc(row["alerted_at"]),
        severity=row["severity"],
        reason=row.get("reason"),
    )


class AlertStore:
    """At most one alert per message; queried for recent alerts per author."""

    def __init__(self, database: Optional[Database] = None):
        self._lock = asyncio.Lock()
        self._db = database
        self._alerts: Dict[int, AlertRecord] = {}

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def record(self, alert: AlertRecord) -> bool:
        """Insert the alert unless one exists for the message. Returns True when stored."""

        if self._uses_db:
            return await self._db.insert_alert(
                message_id=alert.message_id,
                guild_id=alert.guild_id,
                channel_id=alert.channel_id,
                author_id=alert.author_id,
                alerted_at=alert.alerted_at,
                severity=alert.severity,
                reason=alert.reason,
            )
        async with self._lock:
            if alert.message_id in self._alerts:
                return False
            self._alerts[alert.message_id] = alert.model_copy()
            return True

    async def get_by_message(self, message_id: int) -> Optional[AlertRecord]:
        if self._uses_db:
            row = await self._db.fetch_alert_by_message(message_id)
            return alert_from_row(row) if row else None
        async with self._lock:
            alert = self._alerts.get(message_id)
            return alert.model_copy() if alert else None

    async def alert_exists_for_message(self, message_id: int) -> bool:
        return await self.get_by_message(message_id) is not None

    async def by_author(self, author_id: int, limit: int = 10) -> List[AlertRecord]:
        if self._uses_db:
            rows = await self._db.fetch_alerts_by_author(author_id, limit)
            return [alert_from_row(row) for row in rows]
        async with self._lock:
            matches = [a for a in self._alerts.values() if a.author_id == author_id]
        matches.sort(key=lambda a: a.alerted_at, reverse=True)
        return [alert.model_copy() for alert in matches[:limit]]

    async def has_recent_alert(self, author_id: int, since: datetime) -> bool:
        if self._uses_db:
            return await self._db.count_alerts_since(author_id, since) > 0
        async with self._lock:
            return any(
                alert.author_id == author_id and alert.alerted_at >= since
                for alert in self._alerts.values()
            )
