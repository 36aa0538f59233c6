"""End-to-end tests for the message handling pipeline with in-memory stores."""

import asyncio
from datetime import datetime, timedelta, timezone

from workwatch.models.config import WatchSettings
from workwatch.models.records import MessageEvent, Verdict
from workwatch.services.aggregator import SignalAggregator
from workwatch.services.alerts import AlertStore
from workwatch.services.context import ContextBuilder, NameDirectory
from workwatch.services.interactions import InteractionStore
from workwatch.services.messages import MessageStore
from workwatch.services.pipeline import WatchPipeline
from workwatch.services.signals import SignalStore
from workwatch.services.triggers import TriggerEngine

GUILD = 1
CHANNEL = 10
EXCLUDED = 99
A, B = 100, 200
T0 = datetime.fromtimestamp(1000, tz=timezone.utc)


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class ScriptedAnalyzer:
    """Returns the queued verdicts in order and records each request."""

    def __init__(self, *verdicts):
        self.verdicts = list(verdicts)
        self.requests = []

    async def analyze(self, request):
        self.requests.append(request)
        return self.verdicts.pop(0)


def concerning(suggestion="Maybe talk about the specific issue instead?"):
    return Verdict(
        is_concerning=True,
        severity="medium",
        issue_type="implicit_bias",
        reason="generalizes about a group",
        suggestion=suggestion,
        confidence=0.8,
    )


def build_pipeline(analyzer, clock, **settings):
    watch = WatchSettings(excluded_channels=[EXCLUDED], **settings)
    names = NameDirectory()
    names.set_user_name(A, "alice")
    names.set_user_name(B, "bob")
    names.set_channel_name(CHANNEL, "general")
    messages = MessageStore()
    pipeline = WatchPipeline(
        messages=messages,
        interactions=InteractionStore(),
        alerts=AlertStore(),
        triggers=TriggerEngine(),
        context=ContextBuilder(messages, names, watch, clock=clock),
        aggregator=SignalAggregator(SignalStore()),
        analyzer=analyzer,
        names=names,
        settings=watch,
        clock=clock,
    )
    return pipeline


def event(message_id, author, content, at=T0, channel=CHANNEL, mentions=(), reply_to=None):
    return MessageEvent(
        id=message_id,
        guild_id=GUILD,
        channel_id=channel,
        author_id=author,
        content=content,
        timestamp=at,
        mentioned_user_ids=list(mentions),
        reply_to_message_id=reply_to,
    )


class TestHandleMessage:
    def test_generalizing_scenario_end_to_end(self):
        """A generalizing remark is analyzed and produces a notification."""
        analyzer = ScriptedAnalyzer(concerning())
        pipeline = build_pipeline(analyzer, FixedClock(T0))

        outcome = asyncio.run(pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B])))

        assert outcome.decision.should_analyze is True
        assert outcome.decision.target_user_id == B
        assert [entry.message_id for entry in outcome.context.context_messages] == [1]
        assert outcome.context.time_span_minutes == 0
        assert set(outcome.context.involved_users) == {A, B}

        request = analyzer.requests[0]
        assert request.author_label == "alice"
        assert request.target_label == "bob"
        assert request.signal_summary is None
        assert "--- Message Being Analyzed ---" in request.formatted_context

        assert outcome.aggregation.signal.concerning_count == 1
        notification = outcome.notification
        assert notification.author_id == A
        assert notification.channel_label == "general"
        assert notification.target_label == "bob"
        assert notification.severity == "medium"
        assert notification.issue_type == "implicit_bias"
        assert notification.suggestion.startswith("Maybe")

    def test_untriggered_message_is_only_stored(self):
        """Ordinary messages are stored and counted but not analyzed."""
        analyzer = ScriptedAnalyzer()
        pipeline = build_pipeline(analyzer, FixedClock(T0))

        async def run():
            outcome = await pipeline.handle_message(event(1, A, "Can you review my PR?", mentions=[B]))
            return outcome, await pipeline.messages.get(1), await pipeline.interactions.get(GUILD, A, B)

        outcome, stored, interaction = asyncio.run(run())
        assert outcome.decision.should_analyze is False
        assert outcome.skipped_reason == "no concerning patterns detected"
        assert outcome.verdict is None
        assert stored is not None
        assert interaction.interaction_count == 1
        assert analyzer.requests == []

    def test_excluded_channel_is_ignored(self):
        """Messages in excluded channels are neither stored nor analyzed."""
        pipeline = build_pipeline(ScriptedAnalyzer(), FixedClock(T0))

        async def run():
            outcome = await pipeline.handle_message(
                event(1, A, "你們工程師就是這樣", channel=EXCLUDED, mentions=[B])
            )
            return outcome, await pipeline.messages.get(1)

        outcome, stored = asyncio.run(run())
        assert outcome.skipped_reason == "excluded channel"
        assert stored is None

    def test_second_analysis_includes_signal_summary(self):
        """Later analyses receive the long-term summary."""
        analyzer = ScriptedAnalyzer(concerning(), concerning())
        clock = FixedClock(T0)
        pipeline = build_pipeline(analyzer, clock)

        async def run():
            await pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B]))
            clock.now = T0 + timedelta(minutes=5)
            return await pipeline.handle_message(
                event(2, A, "你們工程師就是這樣", at=clock.now, mentions=[B])
            )

        outcome = asyncio.run(run())
        summary = analyzer.requests[1].signal_summary
        assert summary.startswith("=== Long-term Pattern: alice → bob ===")
        assert [e.message_id for e in outcome.context.context_messages] == [1, 2]
        assert outcome.context.time_span_minutes == 5
        assert outcome.aggregation.signal.concerning_count == 2


class TestNotificationGating:
    def test_benign_verdict_does_not_notify(self):
        """Benign verdicts never notify."""
        analyzer = ScriptedAnalyzer(Verdict(is_concerning=False))
        pipeline = build_pipeline(analyzer, FixedClock(T0))
        outcome = asyncio.run(pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B])))
        assert outcome.verdict is not None
        assert outcome.notification is None

    def test_cooldown_blocks_second_notification(self):
        """A second notification waits for the cooldown."""
        analyzer = ScriptedAnalyzer(concerning(), concerning(), concerning())
        clock = FixedClock(T0)
        pipeline = build_pipeline(analyzer, clock, notification_cooldown_minutes=30)

        async def run():
            first = await pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B]))
            stored = await pipeline.record_notification(first.notification, "generalizing")
            clock.now = T0 + timedelta(minutes=10)
            second = await pipeline.handle_message(
                event(2, A, "你們工程師就是這樣", at=clock.now, mentions=[B])
            )
            clock.now = T0 + timedelta(minutes=31)
            third = await pipeline.handle_message(
                event(3, A, "你們工程師就是這樣", at=clock.now, mentions=[B])
            )
            return stored, second, third

        stored, second, third = asyncio.run(run())
        assert stored is True
        assert second.notification is None
        assert third.notification is not None
        assert third.notification.message_id == 3

    def test_already_alerted_message_is_not_renotified(self):
        """A message that already has an alert is not notified again."""
        analyzer = ScriptedAnalyzer(concerning(), concerning())
        pipeline = build_pipeline(analyzer, FixedClock(T0), notification_cooldown_minutes=0)

        async def run():
            first = await pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B]))
            await pipeline.record_notification(first.notification)
            return await pipeline.handle_message(event(1, A, "你們工程師就是這樣", mentions=[B]))

        assert asyncio.run(run()).notification is None


class TestIngest:
    def test_reply_author_is_resolved_and_recorded(self):
        """Replies resolve their author and record the interaction."""
        pipeline = build_pipeline(ScriptedAnalyzer(), FixedClock(T0))

        async def run():
            await pipeline.ingest(event(1, B, "pushed the fix"))
            stored = await pipeline.ingest(
                event(2, A, "thanks", at=T0 + timedelta(minutes=1), reply_to=1)
            )
            return stored, await pipeline.interactions.get(GUILD, A, B)

        stored, interaction = asyncio.run(run())
        assert stored.reply_to_author_id == B
        assert interaction.interaction_count == 1
        assert interaction.context_chain == [CHANNEL]

    def test_reply_to_unknown_message(self):
        """Replies to unknown messages keep the ID without an author."""
        pipeline = build_pipeline(ScriptedAnalyzer(), FixedClock(T0))
        stored = asyncio.run(pipeline.ingest(event(2, A, "thanks", reply_to=12345)))
        assert stored.reply_to_id == 12345
        assert stored.reply_to_author_id is None

    def test_self_mention_records_no_interaction(self):
        """Mentioning yourself records nothing."""
        pipeline = build_pipeline(ScriptedAnalyzer(), FixedClock(T0))

        async def run():
            await pipeline.ingest(event(1, A, "note to self", mentions=[A]))
            return await pipeline.interactions.for_user(GUILD, A, T0 - timedelta(days=1))

        assert asyncio.run(run()) == []

    def test_sweep_expired_messages(self):
        """The sweep removes messages past retention."""
        clock = FixedClock(T0)
        pipeline = build_pipeline(ScriptedAnalyzer(), clock, message_retention_hours=24)

        async def run():
            await pipeline.ingest(event(1, A, "old"))
            await pipeline.ingest(event(2, A, "new", at=T0 + timedelta(hours=20)))
            clock.now = T0 + timedelta(hours=25)
            removed = await pipeline.sweep_expired_messages()
            return removed, await pipeline.messages.get(1), await pipeline.messages.get(2)

        removed, old, new = asyncio.run(run())
        assert removed == 1
        assert old is None
        assert new is not None
