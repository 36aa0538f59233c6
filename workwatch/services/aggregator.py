"""Fold analyzer verdicts into long-term directional signals."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from ..models.records import (
    ISSUE_TYPES,
    SEVERITY_SCORES,
    DailySnapshot,
    UserSignal,
    Verdict,
)
from .signals import SignalKey, SignalStore, calculate_trend, format_signal_for_context

logger = logging.getLogger(__name__)

CONCERN_THRESHOLDS = (3, 5, 10, 20)
SNAPSHOT_LOOKBACK_DAYS = 30
NOTABLE_CONCERNING_COUNT = 3


@dataclass
class AggregationResult:
    signal: UserSignal
    is_new_concern_level: bool
    trend_worsened: bool


def crossed_threshold(previous: int, current: int) -> bool:
    return any(previous < threshold <= current for threshold in CONCERN_THRESHOLDS)


class SignalAggregator:
    """Updates signals and snapshots for each verdict and reports notable changes."""

    def __init__(self, store: SignalStore):
        self._store = store
        # Locks live only while a write for the pair is running or waiting.
        self._pair_locks: weakref.WeakValueDictionary[SignalKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: SignalKey) -> asyncio.Lock:
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        return lock

    async def record_verdict(
        self,
        guild_id: int,
        source_user_id: int,
        target_user_id: int,
        verdict: Verdict,
        now: Optional[datetime] = None,
    ) -> AggregationResult:
        now = now or datetime.now(timezone.utc)
        key = (guild_id, source_user_id, target_user_id)
        async with self._lock_for(key):
            existing = await self._store.get_signal(*key)
            signal = existing or UserSignal(
                guild_id=guild_id,
                source_user_id=source_user_id,
                target_user_id=target_user_id,
                first_seen=now,
                last_seen=now,
                last_aggregated=now,
            )
            previous_count = signal.concerning_count
            previous_trend = signal.trend

            signal.total_interactions += 1
            if verdict.is_concerning:
                total_confidence = signal.avg_confidence * signal.concerning_count
                signal.concerning_count += 1
                signal.avg_confidence = (total_confidence + verdict.confidence) / signal.concerning_count
                if verdict.issue_type in ISSUE_TYPES:
                    current = getattr(signal.issue_breakdown, verdict.issue_type)
                    setattr(signal.issue_breakdown, verdict.issue_type, current + 1)
                current = getattr(signal.severity_breakdown, verdict.severity)
                setattr(signal.severity_breakdown, verdict.severity, current + 1)
            signal.last_seen = now
            signal.last_aggregated = now

            await self._record_snapshot(signal, verdict, now)
            snapshots = await self._store.recent_snapshots(*key, days=SNAPSHOT_LOOKBACK_DAYS)
            signal.trend = calculate_trend(snapshots)
            await self._store.upsert_signal(signal)

            result = AggregationResult(
                signal=signal.model_copy(deep=True),
                is_new_concern_level=crossed_threshold(previous_count, signal.concerning_count),
                trend_worsened=previous_trend != signal.trend and signal.trend == 1,
            )

        if result.is_new_concern_level:
            logger.info(
                "Signal %s -> %s in guild %s reached %s concerning interactions",
                source_user_id,
                target_user_id,
                guild_id,
                signal.concerning_count,
            )
        if result.trend_worsened:
            logger.info(
                "Signal %s -> %s in guild %s is now worsening", source_user_id, target_user_id, guild_id
            )
        return result

    async def _record_snapshot(self, signal: UserSignal, verdict: Verdict, now: datetime) -> None:
        """Accumulate this verdict into the pair's snapshot for the current UTC day."""

        day = now.astimezone(timezone.utc).date().isoformat()
        snapshot = await self._store.get_snapshot(
            signal.guild_id, signal.source_user_id, signal.target_user_id, day
        ) or DailySnapshot(
            guild_id=signal.guild_id,
            source_user_id=signal.source_user_id,
            target_user_id=signal.target_user_id,
            date=day,
        )
        snapshot.interaction_count += 1
        if verdict.is_concerning:
            total_severity = snapshot.avg_severity * snapshot.concerning_count
            snapshot.concerning_count += 1
            snapshot.avg_severity = (
                total_severity + SEVERITY_SCORES[verdict.severity]
            ) / snapshot.concerning_count
            snapshot.primary_issue_type = verdict.issue_type
        await self._store.record_snapshot(snapshot)

    async def get_signal(
        self, guild_id: int, source_user_id: int, target_user_id: int
    ) -> Optional[UserSignal]:
        return await self._store.get_signal(guild_id, source_user_id, target_user_id)

    async def concerning_signals_for_user(self, guild_id: int, user_id: int) -> List[UserSignal]:
        """Signals where the user is source or target that are worth surfacing."""

        signals = await self._store.signals_by_source(guild_id, user_id)
        signals += await self._store.signals_by_target(guild_id, user_id)
        seen = set()
        notable = []
        for signal in signals:
            if signal.key in seen:
                continue
            seen.add(signal.key)
            if signal.concerning_count >= NOTABLE_CONCERNING_COUNT or signal.trend == 1:
                notable.append(signal)
        return notable

    async def top_concerning_patterns(
        self, guild_id: int, limit: int = 10, min_concerning: int = NOTABLE_CONCERNING_COUNT
    ) -> List[UserSignal]:
        return await self._store.top_concerning(guild_id, min_concerning=min_concerning, limit=limit)

    async def signal_summary(
        self,
        guild_id: int,
        source_user_id: int,
        target_user_id: int,
        labels: Optional[Mapping[int, str]] = None,
    ) -> Optional[str]:
        signal = await self._store.get_signal(guild_id, source_user_id, target_user_id)
        if signal is None:
            return None
        labels = labels or {}
        return format_signal_for_context(
            signal, labels.get(source_user_id), labels.get(target_user_id)
        )
