"""
Redis-backed rate-table version for production when REDIS_URL is set.
Implements the same interface as policy_gateway.database.redis (in-memory).

Any process that re-seeds the catalogue bumps ``rate_table:version``; every
RateTable comparing against it reloads its snapshot on the next lookup.
"""

from __future__ import annotations

import asyncio
import logging

import redis

logger = logging.getLogger(__name__)

VERSION_KEY = "rate_table:version"


class RedisRateVersion:
    def __init__(self, url: str, key: str = VERSION_KEY) -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._key = key
        self._last_known = 0

    async def get_version(self) -> int:
        try:
            raw = await asyncio.to_thread(self._client.get, self._key)
        except redis.RedisError as exc:
            # keep serving the last snapshot; the TTL still forces reloads
            logger.warning("Rate table version lookup failed, using last known %s: %s", self._last_known, exc)
            return self._last_known
        self._last_known = int(raw) if raw else 0
        return self._last_known

    async def bump_version(self) -> int:
        self._last_known = int(await asyncio.to_thread(self._client.incr, self._key))
        return self._last_known

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False
