"""Database integration for persistent messages, alerts and long-term signals."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import certifi
import psycopg2
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

Params = Sequence[Any]


class Database:
    """Thread-safe psycopg2 wrapper that initialises tables and executes queries via asyncio."""

    def __init__(self, database_url: Optional[str]):
        self._url = database_url
        self._conn: Optional[PsycopgConnection] = None
        self._lock = asyncio.Lock()

    @property
    def is_enabled(self) -> bool:
        return bool(self._url)

    async def connect(self) -> None:
        if not self._url:
            logger.info("Database URL not configured; using in-memory storage.")
            return
        async with self._lock:
            if self._conn and not self._conn.closed:
                return
            try:
                ssl_args = {}
                if "supabase.co" in self._url:
                    ssl_args = {"sslmode": "verify-full", "sslrootcert": certifi.where()}
                self._conn = await asyncio.to_thread(
                    lambda: psycopg2.connect(dsn=self._url, **ssl_args)
                )
                await asyncio.to_thread(self._run_initial_schema_statements, self._conn)
            except Exception:
                logger.exception(
                    "Failed to initialise database connection; falling back to in-memory storage."
                )
                if self._conn and not self._conn.closed:
                    self._conn.close()
                self._conn = None

    async def close(self) -> None:
        async with self._lock:
            if self._conn and not self._conn.closed:
                await asyncio.to_thread(self._conn.close)
            self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def _run_initial_schema_statements(self, conn: PsycopgConnection) -> None:
        with conn, conn.cursor() as cur:
            cur.execute(
                """
                create table if not exists messages (
                    id bigint primary key,
                    guild_id bigint not null,
                    channel_id bigint not null,
                    author_id bigint not null,
                    content text not null,
                    sent_at timestamptz not null,
                    reply_to_id bigint,
                    reply_to_author_id bigint,
                    mentions bigint[] not null default '{}',
                    stored_at timestamptz not null default now()
                );
                """
            )
            cur.execute(
                """
                create index if not exists idx_messages_guild_sent
                on messages (guild_id, sent_at desc);
                """
            )
            cur.execute(
                """
                create index if not exists idx_messages_author_sent
                on messages (author_id, sent_at desc);
                """
            )
            cur.execute(
                """
                create index if not exists idx_messages_channel_sent
                on messages (channel_id, sent_at desc);
                """
            )
            cur.execute(
                """
                create table if not exists interactions (
                    guild_id bigint not null,
                    user_a_id bigint not null,
                    user_b_id bigint not null,
                    last_interaction_at timestamptz not null,
                    interaction_count integer not null default 1,
                    context_chain bigint[] not null default '{}',
                    primary key (guild_id, user_a_id, user_b_id)
                );
                """
            )
            cur.execute(
                """
                create table if not exists alerts (
                    id bigserial primary key,
                    message_id bigint not null unique,
                    guild_id bigint not null,
                    channel_id bigint not null,
                    author_id bigint not null,
                    alerted_at timestamptz not null default now(),
                    severity text not null,
                    reason text
                );
                """
            )
            cur.execute(
                """
                create index if not exists idx_alerts_author
                on alerts (author_id, alerted_at desc);
                """
            )
            # Breakdown documents carry a schema_version key; see models.records.
            cur.execute(
                """
                create table if not exists user_signals (
                    id bigserial primary key,
                    guild_id bigint not null,
                    source_user_id bigint not null,
                    target_user_id bigint not null,
                    total_interactions integer not null default 0,
                    concerning_count integer not null default 0,
                    issue_breakdown jsonb not null default '{}'::jsonb,
                    severity_breakdown jsonb not null default '{}'::jsonb,
                    avg_confidence double precision not null default 0,
                    trend smallint not null default 0,
                    first_seen timestamptz not null,
                    last_seen timestamptz not null,
                    last_aggregated timestamptz not null,
                    constraint unique_signal_pair unique (guild_id, source_user_id, target_user_id)
                );
                """
            )
            cur.execute(
                """
                create index if not exists idx_user_signals_target
                on user_signals (guild_id, target_user_id);
                """
            )
            cur.execute(
                """
                create index if not exists idx_user_signals_concerning
                on user_signals (guild_id, concerning_count desc);
                """
            )
            cur.execute(
                """
                create table if not exists daily_snapshots (
                    guild_id bigint not null,
                    source_user_id bigint not null,
                    target_user_id bigint not null,
                    snapshot_date date not null,
                    interaction_count integer not null default 0,
                    concerning_count integer not null default 0,
                    avg_severity double precision not null default 0,
                    primary_issue_type text,
                    primary key (guild_id, source_user_id, target_user_id, snapshot_date)
                );
                """
            )

    async def _ensure_connection(self) -> Optional[PsycopgConnection]:
        if not self._url:
            return None
        if not self.is_connected:
            await self.connect()
        return self._conn

    async def _execute_async(self, query: str, params: Params) -> int:
        conn = await self._ensure_connection()
        if conn is None:
            return 0
        async with self._lock:
            return await asyncio.to_thread(self._execute, conn, query, params)

    def _execute(self, conn: PsycopgConnection, query: str, params: Params) -> int:
        with conn, conn.cursor() as cur:
            cur.execute(query, tuple(params))
            return cur.rowcount

    async def _fetchall(self, query: str, params: Params) -> List[Dict[str, Any]]:
        conn = await self._ensure_connection()
        if conn is None:
            return []
        async with self._lock:
            return await asyncio.to_thread(self._fetchall_sync, conn, query, params)

    def _fetchall_sync(
        self, conn: PsycopgConnection, query: str, params: Params
    ) -> List[Dict[str, Any]]:
        with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, tuple(params))
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    async def _fetchone(self, query: str, params: Params) -> Optional[Dict[str, Any]]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    # Messages

    async def upsert_message(
        self,
        message_id: int,
        guild_id: int,
        channel_id: int,
        author_id: int,
        content: str,
        sent_at: datetime,
        reply_to_id: Optional[int],
        reply_to_author_id: Optional[int],
        mentions: List[int],
    ) -> None:
        await self._execute_async(
            """
            insert into messages (
                id, guild_id, channel_id, author_id, content, sent_at,
                reply_to_id, reply_to_author_id, mentions
            )
            values (%s, %s, %s, %s, %s, %s, %s, %s, %s::bigint[])
            on conflict (id)
            do update set
                guild_id = excluded.guild_id,
                channel_id = excluded.channel_id,
                author_id = excluded.author_id,
                content = excluded.content,
                sent_at = excluded.sent_at,
                reply_to_id = excluded.reply_to_id,
                reply_to_author_id = excluded.reply_to_author_id,
                mentions = excluded.mentions,
                stored_at = now();
            """,
            (
                message_id,
                guild_id,
                channel_id,
                author_id,
                content,
                sent_at,
                reply_to_id,
                reply_to_author_id,
                list(mentions),
            ),
        )

    async def fetch_message(self, message_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetchone("select * from messages where id = %s;", (message_id,))

    async def fetch_messages_by_author(
        self, guild_id: int, author_id: int, since: datetime, limit: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from messages
            where guild_id = %s and author_id = %s and sent_at >= %s
            order by sent_at desc
            limit %s;
            """,
            (guild_id, author_id, since, limit),
        )

    async def fetch_messages_by_channel(
        self, channel_id: int, since: datetime, limit: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from messages
            where channel_id = %s and sent_at >= %s
            order by sent_at desc
            limit %s;
            """,
            (channel_id, since, limit),
        )

    async def fetch_context_messages(
        self,
        guild_id: int,
        user_a_id: int,
        user_b_id: int,
        since: datetime,
        until: Optional[datetime],
        limit: int,
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from messages
            where guild_id = %s
              and sent_at >= %s
              and (%s::timestamptz is null or sent_at <= %s)
              and (
                author_id = %s or author_id = %s
                or %s = any(mentions) or %s = any(mentions)
              )
            order by sent_at asc
            limit %s;
            """,
            (guild_id, since, until, until, user_a_id, user_b_id, user_a_id, user_b_id, limit),
        )

    async def delete_messages_older_than(self, cutoff: datetime) -> int:
        return await self._execute_async("delete from messages where sent_at < %s;", (cutoff,))

    # Interactions

    async def upsert_interaction(
        self,
        guild_id: int,
        user_a_id: int,
        user_b_id: int,
        timestamp: datetime,
        context_chain: List[int],
    ) -> None:
        await self._execute_async(
            """
            insert into interactions (
                guild_id, user_a_id, user_b_id, last_interaction_at, interaction_count, context_chain
            )
            values (%s, %s, %s, %s, 1, %s::bigint[])
            on conflict (guild_id, user_a_id, user_b_id)
            do update set
                last_interaction_at = greatest(
                    interactions.last_interaction_at, excluded.last_interaction_at
                ),
                interaction_count = interactions.interaction_count + 1,
                context_chain = excluded.context_chain;
            """,
            (guild_id, user_a_id, user_b_id, timestamp, list(context_chain)),
        )

    async def fetch_interaction(
        self, guild_id: int, user_a_id: int, user_b_id: int
    ) -> Optional[Dict[str, Any]]:
        return await self._fetchone(
            """
            select * from interactions
            where guild_id = %s and user_a_id = %s and user_b_id = %s;
            """,
            (guild_id, user_a_id, user_b_id),
        )

    async def fetch_interactions_for_user(
        self, guild_id: int, user_id: int, since: datetime
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from interactions
            where guild_id = %s and (user_a_id = %s or user_b_id = %s)
              and last_interaction_at >= %s
            order by last_interaction_at desc;
            """,
            (guild_id, user_id, user_id, since),
        )

    # Alerts

    async def insert_alert(
        self,
        message_id: int,
        guild_id: int,
        channel_id: int,
        author_id: int,
        alerted_at: datetime,
        severity: str,
        reason: Optional[str],
    ) -> bool:
        inserted = await self._execute_async(
            """
            insert into alerts (message_id, guild_id, channel_id, author_id, alerted_at, severity, reason)
            values (%s, %s, %s, %s, %s, %s, %s)
            on conflict (message_id) do nothing;
            """,
            (message_id, guild_id, channel_id, author_id, alerted_at, severity, reason),
        )
        return inserted > 0

    async def fetch_alert_by_message(self, message_id: int) -> Optional[Dict[str, Any]]:
        return await self._fetchone(
            "select * from alerts where message_id = %s;",
            (message_id,),
        )

    async def fetch_alerts_by_author(self, author_id: int, limit: int) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from alerts
            where author_id = %s
            order by alerted_at desc
            limit %s;
            """,
            (author_id, limit),
        )

    async def count_alerts_since(self, author_id: int, since: datetime) -> int:
        row = await self._fetchone(
            """
            select count(*) as total from alerts
            where author_id = %s and alerted_at >= %s;
            """,
            (author_id, since),
        )
        return int(row["total"]) if row else 0

    # Long-term signals

    async def upsert_user_signal(
        self,
        guild_id: int,
        source_user_id: int,
        target_user_id: int,
        total_interactions: int,
        concerning_count: int,
        issue_breakdown: Dict[str, Any],
        severity_breakdown: Dict[str, Any],
        avg_confidence: float,
        trend: int,
        first_seen: datetime,
        last_seen: datetime,
        last_aggregated: datetime,
    ) -> None:
        await self._execute_async(
            """
            insert into user_signals (
                guild_id, source_user_id, target_user_id, total_interactions,
                concerning_count, issue_breakdown, severity_breakdown, avg_confidence,
                trend, first_seen, last_seen, last_aggregated
            )
            values (%s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s)
            on conflict (guild_id, source_user_id, target_user_id)
            do update set
                total_interactions = excluded.total_interactions,
                concerning_count = excluded.concerning_count,
                issue_breakdown = excluded.issue_breakdown,
                severity_breakdown = excluded.severity_breakdown,
                avg_confidence = excluded.avg_confidence,
                trend = excluded.trend,
                last_seen = excluded.last_seen,
                last_aggregated = excluded.last_aggregated;
            """,
            (
                guild_id,
                source_user_id,
                target_user_id,
                total_interactions,
                concerning_count,
                json.dumps(issue_breakdown),
                json.dumps(severity_breakdown),
                avg_confidence,
                trend,
                first_seen,
                last_seen,
                last_aggregated,
            ),
        )

    async def fetch_user_signal(
        self, guild_id: int, source_user_id: int, target_user_id: int
    ) -> Optional[Dict[str, Any]]:
        return await self._fetchone(
            """
            select * from user_signals
            where guild_id = %s and source_user_id = %s and target_user_id = %s;
            """,
            (guild_id, source_user_id, target_user_id),
        )

    async def fetch_signals_by_source(
        self, guild_id: int, source_user_id: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from user_signals
            where guild_id = %s and source_user_id = %s
            order by concerning_count desc;
            """,
            (guild_id, source_user_id),
        )

    async def fetch_signals_by_target(
        self, guild_id: int, target_user_id: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from user_signals
            where guild_id = %s and target_user_id = %s
            order by concerning_count desc;
            """,
            (guild_id, target_user_id),
        )

    async def fetch_top_concerning(
        self, guild_id: int, min_concerning: int, limit: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from user_signals
            where guild_id = %s and concerning_count >= %s
            order by concerning_count desc, last_seen desc
            limit %s;
            """,
            (guild_id, min_concerning, limit),
        )

    async def upsert_daily_snapshot(
        self,
        guild_id: int,
        source_user_id: int,
        target_user_id: int,
        snapshot_date: str,
        interaction_count: int,
        concerning_count: int,
        avg_severity: float,
        primary_issue_type: Optional[str],
    ) -> None:
        await self._execute_async(
            """
            insert into daily_snapshots (
                guild_id, source_user_id, target_user_id, snapshot_date,
                interaction_count, concerning_count, avg_severity, primary_issue_type
            )
            values (%s, %s, %s, %s::date, %s, %s, %s, %s)
            on conflict (guild_id, source_user_id, target_user_id, snapshot_date)
            do update set
                interaction_count = excluded.interaction_count,
                concerning_count = excluded.concerning_count,
                avg_severity = excluded.avg_severity,
                primary_issue_type = excluded.primary_issue_type;
            """,
            (
                guild_id,
                source_user_id,
                target_user_id,
                snapshot_date,
                interaction_count,
                concerning_count,
                avg_severity,
                primary_issue_type,
            ),
        )

    async def fetch_daily_snapshot(
        self, guild_id: int, source_user_id: int, target_user_id: int, snapshot_date: str
    ) -> Optional[Dict[str, Any]]:
        return await self._fetchone(
            """
            select * from daily_snapshots
            where guild_id = %s and source_user_id = %s and target_user_id = %s
              and snapshot_date = %s::date;
            """,
            (guild_id, source_user_id, target_user_id, snapshot_date),
        )

    async def fetch_recent_snapshots(
        self, guild_id: int, source_user_id: int, target_user_id: int, limit: int
    ) -> List[Dict[str, Any]]:
        return await self._fetchall(
            """
            select * from daily_snapshots
            where guild_id = %s and source_user_id = %s and target_user_id = %s
            order by snapshot_date desc
            limit %s;
            """,
            (guild_id, source_user_id, target_user_id, limit),
        )
