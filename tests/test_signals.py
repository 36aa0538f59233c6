"""Tests for signal storage, trend calculation and rendering."""

import asyncio
import json
import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from workwatch.models.records import (
    BREAKDOWN_SCHEMA_VERSION,
    DailySnapshot,
    IssueBreakdown,
    SeverityBreakdown,
    UserSignal,
)
from workwatch.services.signals import (
    SignalStore,
    calculate_trend,
    decode_breakdown,
    encode_breakdown,
    format_signal_for_context,
    signal_from_row,
    snapshot_from_row,
)

GUILD = 1
A, B, C = 100, 200, 300
START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def snapshots(counts):
    """Build snapshots newest first from a list of concerning counts."""
    return [
        DailySnapshot(
            guild_id=GUILD,
            source_user_id=A,
            target_user_id=B,
            date=(date(2024, 3, 31) - timedelta(days=index)).isoformat(),
            interaction_count=max(count, 1),
            concerning_count=count,
        )
        for index, count in enumerate(counts)
    ]


def make_signal(source=A, target=B, concerning=0, total=None, trend=0, last_seen=START, **extra):
    return UserSignal(
        guild_id=GUILD,
        source_user_id=source,
        target_user_id=target,
        total_interactions=total if total is not None else max(concerning, 1),
        concerning_count=concerning,
        trend=trend,
        first_seen=START,
        last_seen=last_seen,
        last_aggregated=last_seen,
        **extra,
    )


class TestCalculateTrend:
    """Week-over-week trend classification."""

    @pytest.mark.parametrize("length", [0, 1, 7, 13])
    def test_needs_two_weeks(self, length):
        """Fewer than fourteen snapshots is always stable."""
        assert calculate_trend(snapshots([5] * length)) == 0
        assert calculate_trend(snapshots(list(range(length)))) == 0

    def test_worsening(self):
        """More incidents this week than last is worsening."""
        # Newest first: the latest seven days had two incidents each, the week before none.
        assert calculate_trend(snapshots([2] * 7 + [0] * 7)) == 1

    def test_improving(self):
        """Fewer incidents this week than last is improving."""
        assert calculate_trend(snapshots([0] * 7 + [2] * 7)) == -1

    def test_stable_within_threshold(self):
        """Changes within the threshold are stable."""
        assert calculate_trend(snapshots([1] * 7 + [1, 1, 1, 1, 0, 0, 0])) == 0

    def test_only_first_fourteen_considered(self):
        """Snapshots beyond two weeks are ignored."""
        assert calculate_trend(snapshots([0] * 14 + [9] * 16)) == 0


class TestBreakdownEncoding:
    """jsonb breakdown documents and malformed-record fallback."""

    def test_encode_adds_schema_version(self):
        """Encoded breakdowns carry the schema version."""
        document = encode_breakdown(SeverityBreakdown(low=1, high=2))
        assert document == {
            "low": 1,
            "medium": 0,
            "high": 2,
            "schema_version": BREAKDOWN_SCHEMA_VERSION,
        }

    def test_decode_accepts_json_text(self):
        """Breakdowns decode from JSON text."""
        raw = json.dumps(encode_breakdown(IssueBreakdown(harassment=3)))
        decoded = decode_breakdown(raw, IssueBreakdown, "test")
        assert decoded.harassment == 3

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[1, 2, 3]",
            {"low": "many"},
            {"low": 1, "schema_version": 99},
            None,
        ],
    )
    def test_malformed_breakdown_falls_back_to_zero(self, raw, caplog):
        """Malformed breakdowns decode as zeros with a warning."""
        with caplog.at_level(logging.WARNING):
            decoded = decode_breakdown(raw, SeverityBreakdown, "test")
        assert decoded == SeverityBreakdown()
        assert "Malformed SeverityBreakdown" in caplog.text

    def test_signal_row_with_bad_breakdown(self, caplog):
        """A bad breakdown does not spoil the rest of the row."""
        row = {
            "guild_id": GUILD,
            "source_user_id": A,
            "target_user_id": B,
            "total_interactions": 4,
            "concerning_count": 2,
            "issue_breakdown": "garbage",
            "severity_breakdown": {"low": 2, "medium": 0, "high": 0, "schema_version": 1},
            "avg_confidence": 0.75,
            "trend": 1,
            "first_seen": START.replace(tzinfo=None),
            "last_seen": START,
            "last_aggregated": START,
        }
        with caplog.at_level(logging.WARNING):
            signal = signal_from_row(row)
        assert signal.issue_breakdown == IssueBreakdown()
        assert signal.severity_breakdown.low == 2
        assert signal.trend == 1
        assert signal.first_seen.tzinfo is not None

    def test_snapshot_row_converts_date(self):
        """Snapshot dates are rendered as ISO strings."""
        row = {
            "guild_id": GUILD,
            "source_user_id": A,
            "target_user_id": B,
            "snapshot_date": date(2024, 3, 5),
            "interaction_count": 3,
            "concerning_count": 1,
            "avg_severity": 2,
            "primary_issue_type": "bullying",
        }
        snapshot = snapshot_from_row(row)
        assert snapshot.date == "2024-03-05"
        assert snapshot.avg_severity == 2.0


class TestSignalStore:
    """In-memory SignalStore contract."""

    def test_round_trip(self):
        """A stored signal reads back unchanged."""
        signal = make_signal(
            concerning=3,
            total=5,
            trend=1,
            issue_breakdown=IssueBreakdown(harassment=2, labeling=1),
            severity_breakdown=SeverityBreakdown(low=1, medium=1, high=1),
            avg_confidence=0.8,
        )

        async def run():
            store = SignalStore()
            await store.upsert_signal(signal)
            return await store.get_signal(GUILD, A, B)

        loaded = asyncio.run(run())
        assert loaded.issue_breakdown == signal.issue_breakdown
        assert loaded.severity_breakdown == signal.severity_breakdown
        assert loaded.trend == 1
        assert loaded.concerning_count == 3

    def test_signals_are_directional(self):
        """The reverse pair is a different signal."""
        async def run():
            store = SignalStore()
            await store.upsert_signal(make_signal(A, B, concerning=2))
            return await store.get_signal(GUILD, B, A)

        assert asyncio.run(run()) is None

    def test_first_seen_preserved(self):
        """Upserts keep the original first_seen."""
        async def run():
            store = SignalStore()
            await store.upsert_signal(make_signal())
            later = make_signal(concerning=1, last_seen=START + timedelta(days=2))
            later.first_seen = START + timedelta(days=2)
            await store.upsert_signal(later)
            return await store.get_signal(GUILD, A, B)

        loaded = asyncio.run(run())
        assert loaded.first_seen == START
        assert loaded.last_seen == START + timedelta(days=2)

    def test_returned_signal_is_a_copy(self):
        """Mutating a returned signal does not touch the store."""
        async def run():
            store = SignalStore()
            await store.upsert_signal(make_signal(concerning=1))
            first = await store.get_signal(GUILD, A, B)
            first.severity_breakdown.high = 50
            return await store.get_signal(GUILD, A, B)

        assert asyncio.run(run()).severity_breakdown.high == 0

    def test_top_concerning_order_and_floor(self):
        """Top signals are ordered by count then recency above the floor."""
        async def run():
            store = SignalStore()
            await store.upsert_signal(make_signal(A, B, concerning=5))
            await store.upsert_signal(
                make_signal(A, C, concerning=5, last_seen=START + timedelta(hours=1))
            )
            await store.upsert_signal(make_signal(B, C, concerning=8))
            await store.upsert_signal(make_signal(C, A, concerning=2))
            return await store.top_concerning(GUILD, min_concerning=3, limit=10)

        keys = [(s.source_user_id, s.target_user_id) for s in asyncio.run(run())]
        assert keys == [(B, C), (A, C), (A, B)]

    def test_signals_by_source_and_target(self):
        """Source and target queries order by concerning count."""
        async def run():
            store = SignalStore()
            await store.upsert_signal(make_signal(A, B, concerning=1))
            await store.upsert_signal(make_signal(A, C, concerning=4))
            await store.upsert_signal(make_signal(C, B, concerning=2))
            return (
                await store.signals_by_source(GUILD, A),
                await store.signals_by_target(GUILD, B),
            )

        by_source, by_target = asyncio.run(run())
        assert [s.target_user_id for s in by_source] == [C, B]
        assert [s.source_user_id for s in by_target] == [C, A]

    def test_snapshots_last_write_wins_and_newest_first(self):
        """Snapshots replace per day and list newest first."""
        async def run():
            store = SignalStore()
            for snapshot in snapshots([1, 2, 3]):
                await store.record_snapshot(snapshot)
            replacement = snapshots([7])[0]
            await store.record_snapshot(replacement)
            return await store.recent_snapshots(GUILD, A, B, days=2)

        recent = asyncio.run(run())
        assert [s.date for s in recent] == ["2024-03-31", "2024-03-30"]
        assert recent[0].concerning_count == 7


class TestFormatSignal:
    """Long-term summary rendering."""

    def test_full_rendering(self):
        """Every section of the summary is rendered."""
        signal = make_signal(
            concerning=2,
            total=3,
            trend=1,
            issue_breakdown=IssueBreakdown(harassment=2),
            severity_breakdown=SeverityBreakdown(low=1, high=1),
            last_seen=START + timedelta(days=4),
        )
        text = format_signal_for_context(signal, "alice", "bob")
        assert text.split("\n") == [
            "=== Long-term Pattern: alice → bob ===",
            "Total interactions analyzed: 3",
            "Concerning interactions: 2 (67%)",
            "Trend: 📈 WORSENING",
            "Issue types: harassment: 2",
            "Severity: low: 1, high: 1",
            "Period: 2024-03-01 - 2024-03-05",
        ]

    def test_omits_empty_breakdowns_and_uses_ids(self):
        """Empty breakdowns are omitted and IDs stand in for names."""
        text = format_signal_for_context(make_signal(concerning=0, total=4, trend=-1))
        assert f"=== Long-term Pattern: {A} → {B} ===" in text
        assert "Concerning interactions: 0 (0%)" in text
        assert "📉 Improving" in text
        assert "Issue types" not in text
        assert "Severity" not in text

    def test_stable_trend_label(self):
        """A zero trend renders as stable."""
        assert "➡️ Stable" in format_signal_for_context(make_signal())


class FakeDatabase:
    """Captures writes and serves a canned row, like a connected Database."""

    is_connected = True

    def __init__(self, row=None):
        self.row = row
        self.upserts = []

    async def upsert_user_signal(self, **values):
        self.upserts.append(values)

    async def fetch_user_signal(self, guild_id, source_user_id, target_user_id):
        return self.row


class TestSignalStoreWithDatabase:
    """Write-through path against a connected database."""

    def test_upsert_writes_versioned_documents(self):
        """Writes send versioned breakdown documents."""
        database = FakeDatabase()
        signal = make_signal(concerning=1, severity_breakdown=SeverityBreakdown(high=1))
        asyncio.run(SignalStore(database).upsert_signal(signal))
        written = database.upserts[0]
        assert written["severity_breakdown"]["high"] == 1
        assert written["severity_breakdown"]["schema_version"] == BREAKDOWN_SCHEMA_VERSION
        assert written["issue_breakdown"]["schema_version"] == BREAKDOWN_SCHEMA_VERSION

    def test_get_decodes_row(self):
        """Reads decode database rows into signals."""
        row = {
            "guild_id": GUILD,
            "source_user_id": A,
            "target_user_id": B,
            "total_interactions": 2,
            "concerning_count": 1,
            "issue_breakdown": encode_breakdown(IssueBreakdown(targeting=1)),
            "severity_breakdown": encode_breakdown(SeverityBreakdown(low=1)),
            "avg_confidence": 0.6,
            "trend": 0,
            "first_seen": START,
            "last_seen": START,
            "last_aggregated": START,
        }
        signal = asyncio.run(SignalStore(FakeDatabase(row)).get_signal(GUILD, A, B))
        assert signal.issue_breakdown.targeting == 1
        assert signal.severity_breakdown.low == 1
