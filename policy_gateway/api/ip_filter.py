"""
IP whitelist / blacklist check for the HTTP adapter.

Lookup failures follow the configured ``fail_open`` policy: with fail_open
(the default) the request is allowed and the error logged; otherwise it is
denied with IP_FILTER_UNAVAILABLE.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, List, Optional, Protocol

from policy_gateway.utils.config_loader import IPFilterConfig

logger = logging.getLogger(__name__)

IP_BLACKLISTED = "IP_BLACKLISTED"
IP_NOT_WHITELISTED = "IP_NOT_WHITELISTED"
IP_FILTER_UNAVAILABLE = "IP_FILTER_UNAVAILABLE"


class IPRuleSource(Protocol):
    async def is_blacklisted(self, ip: str) -> bool: ...

    async def has_whitelist(self) -> bool: ...

    async def is_whitelisted(self, ip: str) -> bool: ...


def _networks(entries: Iterable[str]) -> List[ipaddress._BaseNetwork]:
    return [ipaddress.ip_network(e.strip(), strict=False) for e in entries if e and e.strip()]


class StaticIPRules:
    """Rules from configuration; entries are addresses or CIDR blocks."""

    def __init__(self, whitelist: Iterable[str] = (), blacklist: Iterable[str] = ()) -> None:
        self._whitelist = _networks(whitelist)
        self._blacklist = _networks(blacklist)

    @staticmethod
    def _contains(networks, ip: str) -> bool:
        address = ipaddress.ip_address(ip)
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped
        return any(address in net for net in networks)

    async def is_blacklisted(self, ip: str) -> bool:
        return self._contains(self._blacklist, ip)

    async def has_whitelist(self) -> bool:
        return bool(self._whitelist)

    async def is_whitelisted(self, ip: str) -> bool:
        return self._contains(self._whitelist, ip)


class IPFilter:
    def __init__(self, config: IPFilterConfig, rules: Optional[IPRuleSource] = None) -> None:
        self.enabled = config.enabled
        self.fail_open = config.fail_open
        self.rules = rules or StaticIPRules(config.whitelist, config.blacklist)

    async def check(self, client_ip: str) -> Optional[str]:
        """Return a denial code, or None when the request may proceed."""
        if not self.enabled:
            return None
        try:
            if await self.rules.is_blacklisted(client_ip):
                return IP_BLACKLISTED
            if await self.rules.has_whitelist() and not await self.rules.is_whitelisted(client_ip):
                return IP_NOT_WHITELISTED
        except Exception as exc:
            logger.error("IP filter lookup failed for %r (fail_open=%s): %s", client_ip, self.fail_open, exc)
            return None if self.fail_open else IP_FILTER_UNAVAILABLE
        return None
