"""Construction of the long-lived sync components.

Shared by the FastAPI lifespan and the ``lexsync-sync`` command so both run
the exact same pipeline: one aiohttp session, one Zoho token cache, one
throttle, one batch processor and one daily reconciler per process.
"""
from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from lexsync import config
from lexsync.exceptions import FatalConfigurationError
from lexsync.integrations import LexClient, ZohoClient, ZohoTokenProvider
from lexsync.jobs.daily_sync import DailyReconciler
from lexsync.services.batch_processor import BatchProcessor
from lexsync.services.enrichment import EnrichmentResolver
from lexsync.utils import get_logger
from lexsync.utils.throttle import Throttle

logger = get_logger(__name__)


@dataclass
class SyncComponents:
    session: aiohttp.ClientSession
    lex: LexClient
    zoho: ZohoClient
    token_provider: ZohoTokenProvider
    throttle: Throttle
    processor: BatchProcessor
    reconciler: DailyReconciler

    async def close(self) -> None:
        await self.session.close()


def ensure_configured() -> None:
    missing = config.validate_settings()
    if missing:
        logger.error("Required settings missing", missing=missing)
        raise FatalConfigurationError(missing)


def open_session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT_SECONDS))


def build_components(session: aiohttp.ClientSession, *, throttle: Throttle | None = None) -> SyncComponents:
    throttle = throttle or Throttle()
    token_provider = ZohoTokenProvider(session)
    lex = LexClient(session)
    zoho = ZohoClient(session, token_provider)
    processor = BatchProcessor(lex, zoho, resolver=EnrichmentResolver(lex, zoho), throttle=throttle)
    reconciler = DailyReconciler(lex, zoho, processor, throttle=throttle)
    return SyncComponents(
        session=session,
        lex=lex,
        zoho=zoho,
        token_provider=token_provider,
        throttle=throttle,
        processor=processor,
        reconciler=reconciler,
    )


__all__ = ["SyncComponents", "build_components", "ensure_configured", "open_session"]
