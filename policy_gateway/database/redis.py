"""
In-memory rate-table version counter for local development.

Same interface as policy_gateway.database.redis_real so the RateTable can
run without a real Redis instance. Only useful inside one process.
"""

from __future__ import annotations


class InMemoryRateVersion:
    def __init__(self, version: int = 0) -> None:
        self._version = version

    async def get_version(self) -> int:
        return self._version

    async def bump_version(self) -> int:
        self._version += 1
        return self._version

    def ping(self) -> bool:
        return True
