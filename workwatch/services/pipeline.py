"""Message handling pipeline: ingest, screen, analyze, aggregate, decide."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from ..models.config import WatchSettings
from ..models.records import AlertRecord, AnalysisRequest, MessageEvent, StoredMessage, Verdict
from .aggregator import AggregationResult, SignalAggregator
from .alerts import AlertStore
from .analyzer import VerdictAnalyzer
from .context import Clock, ContextBuilder, ContextChain, NameDirectory, utc_now
from .interactions import InteractionStore
from .messages import MessageStore
from .triggers import TriggerDecision, TriggerEngine

logger = logging.getLogger(__name__)


@dataclass
class NotificationRequest:
    guild_id: int
    channel_id: int
    channel_label: str
    message_id: int
    author_id: int
    severity: str
    issue_type: str
    suggestion: str
    target_label: Optional[str] = None


@dataclass
class PipelineOutcome:
    message: Optional[StoredMessage] = None
    decision: Optional[TriggerDecision] = None
    context: Optional[ContextChain] = None
    verdict: Optional[Verdict] = None
    aggregation: Optional[AggregationResult] = None
    notification: Optional[NotificationRequest] = None
    skipped_reason: Optional[str] = None


class WatchPipeline:
    """Processes each guild message to completion before returning."""

    def __init__(
        self,
        messages: MessageStore,
        interactions: InteractionStore,
        alerts: AlertStore,
        triggers: TriggerEngine,
        context: ContextBuilder,
        aggregator: SignalAggregator,
        analyzer: VerdictAnalyzer,
        names: NameDirectory,
        settings: WatchSettings,
        clock: Optional[Clock] = None,
    ):
        self.messages = messages
        self.interactions = interactions
        self.alerts = alerts
        self.triggers = triggers
        self.context = context
        self.aggregator = aggregator
        self.analyzer = analyzer
        self.names = names
        self.settings = settings
        self._clock = clock or utc_now

    async def ingest(self, event: MessageEvent) -> StoredMessage:
        """Store the message and record who it was aimed at."""

        reply_to_author_id = None
        if event.reply_to_message_id is not None:
            replied = await self.messages.get(event.reply_to_message_id)
            if replied is not None:
                reply_to_author_id = replied.author_id

        message = StoredMessage(
            id=event.id,
            guild_id=event.guild_id,
            channel_id=event.channel_id,
            author_id=event.author_id,
            content=event.content,
            timestamp=event.timestamp,
            reply_to_id=event.reply_to_message_id,
            reply_to_author_id=reply_to_author_id,
            mentioned_user_ids=list(event.mentioned_user_ids),
        )
        await self.messages.insert(message)

        counterparts: List[int] = []
        for user_id in [*message.mentioned_user_ids, reply_to_author_id]:
            if user_id is None or user_id == message.author_id or user_id in counterparts:
                continue
            counterparts.append(user_id)
        for user_id in counterparts:
            await self.interactions.record(
                message.guild_id,
                message.author_id,
                user_id,
                message.timestamp,
                [message.channel_id],
            )
        return message

    async def handle_message(self, event: MessageEvent) -> PipelineOutcome:
        if event.channel_id in self.settings.excluded_channels:
            return PipelineOutcome(skipped_reason="excluded channel")

        message = await self.ingest(event)
        outcome = PipelineOutcome(message=message)

        decision = self.triggers.classify(
            message.content,
            message.author_id,
            message.mentioned_user_ids,
            message.reply_to_author_id,
        )
        outcome.decision = decision
        if not decision.should_analyze or decision.target_user_id is None:
            outcome.skipped_reason = decision.reason
            return outcome

        logger.info("Analysis triggered for message %s: %s", message.id, decision.reason)
        target_id = decision.target_user_id

        now = self._clock()
        chain = await self.context.build(
            message.guild_id, message.id, message.author_id, target_id, now=now
        )
        outcome.context = chain
        if chain is None:
            outcome.skipped_reason = "no context available"
            return outcome
        logger.debug(
            "Context built with %s messages spanning %s minutes",
            len(chain.context_messages),
            chain.time_span_minutes,
        )

        target_label = self.names.user_label(target_id) if target_id != message.author_id else None
        summary = await self.aggregator.signal_summary(
            message.guild_id, message.author_id, target_id, self.names.user_labels()
        )
        request = AnalysisRequest(
            formatted_context=self.context.format_for_analysis(chain),
            message_content=message.content,
            author_label=self.names.user_label(message.author_id),
            target_label=target_label,
            language=self.settings.language,
            signal_summary=summary,
        )
        verdict = await self.analyzer.analyze(request)
        outcome.verdict = verdict

        outcome.aggregation = await self.aggregator.record_verdict(
            message.guild_id, message.author_id, target_id, verdict, now=now
        )
        outcome.notification = await self._notification_for(message, verdict, target_label)
        return outcome

    async def _notification_for(
        self, message: StoredMessage, verdict: Verdict, target_label: Optional[str]
    ) -> Optional[NotificationRequest]:
        if not verdict.is_concerning:
            return None
        if await self.alerts.alert_exists_for_message(message.id):
            logger.debug("Alert already sent for message %s", message.id)
            return None
        since = self._clock() - timedelta(minutes=self.settings.notification_cooldown_minutes)
        if await self.alerts.has_recent_alert(message.author_id, since):
            logger.debug("User %s is in notification cooldown", message.author_id)
            return None
        return NotificationRequest(
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            channel_label=self.names.channel_label(message.channel_id),
            message_id=message.id,
            author_id=message.author_id,
            target_label=target_label,
            severity=verdict.severity,
            issue_type=verdict.issue_type,
            suggestion=verdict.suggestion,
        )

    async def record_notification(
        self, request: NotificationRequest, reason: Optional[str] = None
    ) -> bool:
        """Remember a delivered notification for dedup and cooldown."""

        return await self.alerts.record(
            AlertRecord(
                message_id=request.message_id,
                guild_id=request.guild_id,
                channel_id=request.channel_id,
                author_id=request.author_id,
                alerted_at=self._clock(),
                severity=request.severity,
                reason=reason,
            )
        )

    async def sweep_expired_messages(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        cutoff = now - timedelta(hours=self.settings.message_retention_hours)
        return await self.messages.delete_older_than(cutoff)
