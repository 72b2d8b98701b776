"""The dependency bundle threaded through every relay component."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .ai import AIDispatcher, build_provider
from .alerting import AlertNotifier
from .chain import ChainClient
from .config import OracleConfig
from .history import HistoryWalker
from .metrics import OracleMetrics
from .rofl import RoflClient
from .session_keys import SessionKeyResolver
from .storage import ArweaveContentStore, ContentStore, MemoryContentStore
from .stores import FileQueueStore, FileWatermarkStore, QueueStore, WatermarkStore

LOGGER = logging.getLogger(__name__)


@dataclass
class OracleContext:
    """Collaborators and shared state for one relay process.

    ``worker_lock`` admits one handler execution at a time across live
    ingestion and retry draining.
    """

    config: OracleConfig
    chain: Any
    storage: ContentStore
    notifier: AlertNotifier
    ai: AIDispatcher
    session_keys: SessionKeyResolver
    history: HistoryWalker
    watermarks: WatermarkStore
    queue: QueueStore
    metrics: OracleMetrics
    rofl: Optional[RoflClient] = None
    clock: Callable[[], float] = time.time
    worker_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def build_storage(config: OracleConfig) -> ContentStore:
    if config.storage_backend == "memory":
        LOGGER.warning("Using in-memory storage; uploaded content will not survive a restart")
        return MemoryContentStore()
    return ArweaveContentStore(
        upload_url=config.storage_upload_url,
        gateway_url=config.storage_gateway_url,
        graphql_url=config.storage_graphql_url,
        token=config.storage_api_token,
    )


def build_context(config: OracleConfig, *, chain: Optional[ChainClient] = None) -> OracleContext:
    """Wire production collaborators for ``config``."""

    chain = chain or ChainClient(config)
    storage = build_storage(config)
    provider = build_provider(
        config.ai_provider,
        ollama_url=config.ollama_url,
        ollama_model=config.ollama_model,
        chaingpt_api_key=config.chaingpt_api_key,
    )
    return OracleContext(
        config=config,
        chain=chain,
        storage=storage,
        notifier=AlertNotifier(config.alerting),
        ai=AIDispatcher(provider),
        session_keys=SessionKeyResolver(
            storage=storage,
            private_key=config.private_key,
            is_confidential=config.is_confidential,
            chain_id=chain.chain_id,
        ),
        history=HistoryWalker(storage, limit=config.context_messages_limit),
        watermarks=FileWatermarkStore(config.state_path),
        queue=FileQueueStore(config.failed_jobs_path),
        metrics=OracleMetrics(),
        rofl=RoflClient(config.rofl_socket_path) if config.is_confidential and not config.is_localnet else None,
    )


__all__ = ["OracleContext", "build_context", "build_storage"]
