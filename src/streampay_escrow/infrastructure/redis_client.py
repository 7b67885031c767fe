"""Redis client for the cross-process signing-account lock.

Several API workers may submit attestations with the same backend key. The
account's sequence number is only safe if one of them builds and broadcasts
at a time, so when ``REDIS_URL`` is set the submitter serializes through a
Redis lock keyed by the signing account.

Usage:
    from streampay_escrow.infrastructure.redis_client import init_redis, signing_lock_factory

    redis = await init_redis()
    submitter = build_submitter(settings, lock_factory=signing_lock_factory(redis, "GABC..."))
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import redis.asyncio as aioredis
from redis.exceptions import LockError

from streampay_escrow.config import get_settings
from streampay_escrow.domain.exceptions import ChainError
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from contextlib import AbstractAsyncContextManager

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

SIGNING_LOCK_PREFIX = "streampay:signing-lock:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Signing-account lock ---


def signing_lock_factory(
    redis: aioredis.Redis,
    account_id: str,
    timeout_seconds: int | None = None,
    blocking_timeout_seconds: int | None = None,
) -> Callable[[], AbstractAsyncContextManager[None]]:
    """Build the lock factory handed to AttestationSubmitter.

    Each call returns a fresh lock context; a redis-py Lock object holds its
    token per acquisition and must not be shared between coroutines.
    """
    settings = get_settings()
    timeout = timeout_seconds or settings.redis_lock_timeout_seconds
    blocking_timeout = blocking_timeout_seconds or settings.redis_lock_blocking_timeout_seconds
    name = f"{SIGNING_LOCK_PREFIX}{account_id}"

    @asynccontextmanager
    async def _locked() -> AsyncIterator[None]:
        lock = redis.lock(name, timeout=timeout, blocking_timeout=blocking_timeout)
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("redis.signing_lock_busy", account=account_id)
            raise ChainError(f"Signing account {account_id} is busy", code="SIGNING_LOCK_BUSY")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired while held; another holder may already own it
                logger.warning("redis.signing_lock_expired", account=account_id)

    return _locked
