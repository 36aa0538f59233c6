"""Durable per-pair signal storage, daily snapshots and trend calculation."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..db import Database
from ..models.records import (
    BREAKDOWN_SCHEMA_VERSION,
    DailySnapshot,
    IssueBreakdown,
    SeverityBreakdown,
    UserSignal,
)
from .messages import _as_utc

logger = logging.getLogger(__name__)

TREND_WINDOW_DAYS = 7
TREND_MIN_SNAPSHOTS = TREND_WINDOW_DAYS * 2
TREND_CHANGE_THRESHOLD = 0.5

SignalKey = Tuple[int, int, int]
SnapshotKey = Tuple[int, int, int, str]
BreakdownT = TypeVar("BreakdownT", bound=BaseModel)


def encode_breakdown(breakdown: BaseModel) -> Dict[str, Any]:
    document = breakdown.model_dump()
    document["schema_version"] = BREAKDOWN_SCHEMA_VERSION
    return document


def decode_breakdown(raw: Any, model: Type[BreakdownT], context: str) -> BreakdownT:
    """Parse a stored breakdown document, substituting zeros when it is unreadable."""

    try:
        document = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        if not isinstance(document, dict):
            raise ValueError(f"expected an object, got {type(document).__name__}")
        document = dict(document)
        version = document.pop("schema_version", BREAKDOWN_SCHEMA_VERSION)
        if version != BREAKDOWN_SCHEMA_VERSION:
            raise ValueError(f"unsupported schema_version {version!r}")
        return model.model_validate(document)
    except (ValueError, ValidationError) as exc:
        logger.warning("Malformed %s for %s; using empty breakdown: %s", model.__name__, context, exc)
        return model()


def signal_from_row(row: Dict[str, Any]) -> UserSignal:
    context = f"signal {row['guild_id']}/{row['source_user_id']}->{row['target_user_id']}"
    return UserSignal(
        guild_id=row["guild_id"],
        source_user_id=row["source_user_id"],
        target_user_id=row["target_user_id"],
        total_interactions=row["total_interactions"],
        concerning_count=row["concerning_count"],
        issue_breakdown=decode_breakdown(row.get("issue_breakdown"), IssueBreakdown, context),
        severity_breakdown=decode_breakdown(
            row.get("severity_breakdown"), SeverityBreakdown, context
        ),
        avg_confidence=float(row["avg_confidence"]),
        trend=int(row["trend"]),
        first_seen=_as_utc(row["first_seen"]),
        last_seen=_as_utc(row["last_seen"]),
        last_aggregated=_as_utc(row["last_aggregated"]),
    )


def snapshot_from_row(row: Dict[str, Any]) -> DailySnapshot:
    snapshot_date = row["snapshot_date"]
    if isinstance(snapshot_date, date):
        snapshot_date = snapshot_date.isoformat()
    return DailySnapshot(
        guild_id=row["guild_id"],
        source_user_id=row["source_user_id"],
        target_user_id=row["target_user_id"],
        date=snapshot_date,
        interaction_count=row["interaction_count"],
        concerning_count=row["concerning_count"],
        avg_severity=float(row["avg_severity"]),
        primary_issue_type=row.get("primary_issue_type"),
    )


def calculate_trend(snapshots: Sequence[DailySnapshot]) -> int:
    """Compare the latest week against the week before it.

    ``snapshots`` must be ordered newest first. Returns 1 when concerning
    activity rose by more than half an incident per day, -1 when it fell by as
    much, and 0 otherwise or when fewer than two weeks of data exist.
    """

    if len(snapshots) < TREND_MIN_SNAPSHOTS:
        return 0
    recent = snapshots[:TREND_WINDOW_DAYS]
    previous = snapshots[TREND_WINDOW_DAYS:TREND_MIN_SNAPSHOTS]
    recent_avg = sum(s.concerning_count for s in recent) / len(recent)
    previous_avg = sum(s.concerning_count for s in previous) / len(previous)
    change = recent_avg - previous_avg
    if change > TREND_CHANGE_THRESHOLD:
        return 1
    if change < -TREND_CHANGE_THRESHOLD:
        return -1
    return 0


_TREND_LABELS = {1: "📈 WORSENING", -1: "📉 Improving", 0: "➡️ Stable"}


def format_signal_for_context(
    signal: UserSignal,
    source_label: Optional[str] = None,
    target_label: Optional[str] = None,
) -> str:
    """Render a signal as the long-term summary handed to the analyzer."""

    source = source_label or str(signal.source_user_id)
    target = target_label or str(signal.target_user_id)
    percentage = (
        int(signal.concerning_count / signal.total_interactions * 100 + 0.5)
        if signal.total_interactions
        else 0
    )
    lines = [
        f"=== Long-term Pattern: {source} → {target} ===",
        f"Total interactions analyzed: {signal.total_interactions}",
        f"Concerning interactions: {signal.concerning_count} ({percentage}%)",
        f"Trend: {_TREND_LABELS.get(signal.trend, _TREND_LABELS[0])}",
    ]
    issues = signal.issue_breakdown.nonzero()
    if issues:
        lines.append(
            "Issue types: " + ", ".join(f"{kind}: {count}" for kind, count in issues.items())
        )
    severities = signal.severity_breakdown.nonzero()
    if severities:
        lines.append(
            "Severity: " + ", ".join(f"{level}: {count}" for level, count in severities.items())
        )
    lines.append(
        f"Period: {signal.first_seen.date().isoformat()} - {signal.last_seen.date().isoformat()}"
    )
    return "\n".join(lines)


class SignalStore:
    """Directional user signals and their daily snapshot history."""

    def __init__(self, database: Optional[Database] = None):
        self._lock = asyncio.Lock()
        self._db = database
        self._signals: Dict[SignalKey, UserSignal] = {}
        self._snapshots: Dict[SnapshotKey, DailySnapshot] = {}

    @property
    def _uses_db(self) -> bool:
        return self._db is not None and self._db.is_connected

    async def get_signal(
        self, guild_id: int, source_user_id: int, target_user_id: int
    ) -> Optional[UserSignal]:
        if self._uses_db:
            row = await self._db.fetch_user_signal(guild_id, source_user_id, target_user_id)
            return signal_from_row(row) if row else None
        async with self._lock:
            signal = self._signals.get((guild_id, source_user_id, target_user_id))
            return signal.model_copy(deep=True) if signal else None

    async def upsert_signal(self, signal: UserSignal) -> None:
        """Store the signal under its directional key; the first_seen of an existing row is kept."""

        if self._uses_db:
            await self._db.upsert_user_signal(
                guild_id=signal.guild_id,
                source_user_id=signal.source_user_id,
                target_user_id=signal.target_user_id,
                total_interactions=signal.total_interactions,
                concerning_count=signal.concerning_count,
                issue_breakdown=encode_breakdown(signal.issue_breakdown),
                severity_breakdown=encode_breakdown(signal.severity_breakdown),
                avg_confidence=signal.avg_confidence,
                trend=signal.trend,
                first_seen=signal.first_seen,
                last_seen=signal.last_seen,
                last_aggregated=signal.last_aggregated,
            )
            return
        async with self._lock:
            stored = signal.model_copy(deep=True)
            existing = self._signals.get(signal.key)
            if existing is not None:
                stored.first_seen = existing.first_seen
            self._signals[signal.key] = stored

    async def signals_by_source(self, guild_id: int, source_user_id: int) -> List[UserSignal]:
        if self._uses_db:
            rows = await self._db.fetch_signals_by_source(guild_id, source_user_id)
            return [signal_from_row(row) for row in rows]
        return await self._filter_signals(
            lambda s: s.guild_id == guild_id and s.source_user_id == source_user_id
        )

    async def signals_by_target(self, guild_id: int, target_user_id: int) -> List[UserSignal]:
        if self._uses_db:
            rows = await self._db.fetch_signals_by_target(guild_id, target_user_id)
            return [signal_from_row(row) for row in rows]
        return await self._filter_signals(
            lambda s: s.guild_id == guild_id and s.target_user_id == target_user_id
        )

    async def top_concerning(
        self, guild_id: int, min_concerning: int = 3, limit: int = 10
    ) -> List[UserSignal]:
        if self._uses_db:
            rows = await self._db.fetch_top_concerning(guild_id, min_concerning, limit)
            return [signal_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                s
                for s in self._signals.values()
                if s.guild_id == guild_id and s.concerning_count >= min_concerning
            ]
        matches.sort(key=lambda s: (s.concerning_count, s.last_seen), reverse=True)
        return [s.model_copy(deep=True) for s in matches[:limit]]

    async def _filter_signals(self, predicate) -> List[UserSignal]:
        async with self._lock:
            matches = [s for s in self._signals.values() if predicate(s)]
        matches.sort(key=lambda s: s.concerning_count, reverse=True)
        return [s.model_copy(deep=True) for s in matches]

    async def get_snapshot(
        self, guild_id: int, source_user_id: int, target_user_id: int, snapshot_date: str
    ) -> Optional[DailySnapshot]:
        if self._uses_db:
            row = await self._db.fetch_daily_snapshot(
                guild_id, source_user_id, target_user_id, snapshot_date
            )
            return snapshot_from_row(row) if row else None
        async with self._lock:
            snapshot = self._snapshots.get(
                (guild_id, source_user_id, target_user_id, snapshot_date)
            )
            return snapshot.model_copy() if snapshot else None

    async def record_snapshot(self, snapshot: DailySnapshot) -> None:
        if self._uses_db:
            await self._db.upsert_daily_snapshot(
                guild_id=snapshot.guild_id,
                source_user_id=snapshot.source_user_id,
                target_user_id=snapshot.target_user_id,
                snapshot_date=snapshot.date,
                interaction_count=snapshot.interaction_count,
                concerning_count=snapshot.concerning_count,
                avg_severity=snapshot.avg_severity,
                primary_issue_type=snapshot.primary_issue_type,
            )
            return
        key = (snapshot.guild_id, snapshot.source_user_id, snapshot.target_user_id, snapshot.date)
        async with self._lock:
            self._snapshots[key] = snapshot.model_copy()

    async def recent_snapshots(
        self, guild_id: int, source_user_id: int, target_user_id: int, days: int = 30
    ) -> List[DailySnapshot]:
        """Most recent snapshots for the pair, newest date first."""

        if self._uses_db:
            rows = await self._db.fetch_recent_snapshots(
                guild_id, source_user_id, target_user_id, days
            )
            return [snapshot_from_row(row) for row in rows]
        async with self._lock:
            matches = [
                snapshot
                for (g, s, t, _), snapshot in self._snapshots.items()
                if (g, s, t) == (guild_id, source_user_id, target_user_id)
            ]
        matches.sort(key=lambda snapshot: snapshot.date, reverse=True)
        return [snapshot.model_copy() for snapshot in matches[:days]]
