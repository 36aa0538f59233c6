"""Entry-point for running the workwatch Discord bot."""

from __future__ import annotations

import asyncio
import logging

from workwatch import create_bot
from workwatch.db import Database
from workwatch.models.config import load_settings
from workwatch.services.aggregator import SignalAggregator
from workwatch.services.alerts import AlertStore
from workwatch.services.analyzer import VerdictAnalyzer
from workwatch.services.context import ContextBuilder, NameDirectory
from workwatch.services.interactions import InteractionStore
from workwatch.services.llm import LLMClient
from workwatch.services.messages import MessageStore
from workwatch.services.pipeline import WatchPipeline
from workwatch.services.signals import SignalStore
from workwatch.services.triggers import TriggerEngine


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def async_main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    database = Database(settings.database_url)
    await database.connect()
    storage = "database" if database.is_connected else "in-memory"
    logger.info("Stores initialised using %s storage", storage)

    watch = settings.watch
    names = NameDirectory()
    messages = MessageStore(database)
    llm = LLMClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
    )
    if not llm.is_configured():
        logger.warning("OPENAI_API_KEY not set - every triggered message will get the default verdict")

    pipeline = WatchPipeline(
        messages=messages,
        interactions=InteractionStore(database),
        alerts=AlertStore(database),
        triggers=TriggerEngine(),
        context=ContextBuilder(messages, names, watch),
        aggregator=SignalAggregator(SignalStore(database)),
        analyzer=VerdictAnalyzer(llm),
        names=names,
        settings=watch,
    )

    bot = create_bot(settings, pipeline, names)
    try:
        await bot.start(settings.discord_token)
    finally:
        await database.close()


def main() -> None:
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
