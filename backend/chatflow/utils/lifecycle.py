# /chatflow/utils/lifecycle.py

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from chatflow.config.settings import MatchingConfig, Settings, settings as default_settings
from chatflow.services.config_service import ConfigService
from chatflow.services.conversation_service import DecisionEngine
from chatflow.services.db_service import SQLiteGateway
from chatflow.services.matching_service import ResponseMatcher
from chatflow.services.trainer_service import TrainerService
from chatflow.utils.events import EventEmitter
from chatflow.utils.logging import setup_logging
from chatflow.workflows.engine import FlowEngine

# This file manages the engine's lifespan, handling startup tasks like
# opening the database and loading the corpus, and shutdown tasks like
# stopping the cache sweeper and closing connections.

logger = logging.getLogger(__name__)


async def _sweep_cache_periodically(matcher: ResponseMatcher, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        purged = matcher.sweep_cache()
        if purged:
            logger.info(f"Cache cleanup: {purged} expired entries removed")


@asynccontextmanager
async def lifespan(settings: Settings = default_settings) -> AsyncIterator[DecisionEngine]:
    """Build the decision engine and its collaborators for the duration of the block."""
    setup_logging(settings)
    logger.info("Decision engine starting up...")

    events = EventEmitter()
    gateway = SQLiteGateway(settings.database_path)
    matcher = ResponseMatcher(MatchingConfig.from_settings(settings), gateway, events=events)
    await matcher.load_training_data()

    if settings.seed_training_data and matcher.corpus_size == 0:
        await TrainerService(matcher, gateway).seed_initial_training()

    config_service = ConfigService(settings.bot_config_path)
    flow_engine = FlowEngine(config_service.get_config(), matcher=matcher, gateway=gateway, events=events)
    engine = DecisionEngine(flow_engine, matcher, gateway, settings=settings, events=events)
    config_service.subscribe(engine.reload_config)

    sweeper = None
    if settings.ai_cache_enabled:
        sweeper = asyncio.create_task(
            _sweep_cache_periodically(matcher, settings.ai_cache_sweep_interval_seconds)
        )

    logger.info("Decision engine startup complete. Ready to accept messages.")

    try:
        yield engine
    finally:
        logger.info("Decision engine shutting down...")
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        gateway.close()
