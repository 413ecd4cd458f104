import hmac
import logging
import os
from typing import List

from fastapi import Header, HTTPException, Request, status

from policy_gateway.api.ip_filter import IPFilter
from policy_gateway.api.services import GatewayServices

logger = logging.getLogger(__name__)

_ALLOWLIST_PATHS = {
    "/",
    "/health",
    "/docs",
    "/docs/oauth2-redirect",
    "/openapi.json",
    "/redoc",
}

# gateways cannot send our API key; these paths rely on the IP filter instead
_CALLBACK_PREFIX = "/api/v1/payments/callback"


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services


def get_api_keys(request: Request) -> List[str]:
    services: GatewayServices = request.app.state.services
    return list(services.config.api_keys)


async def api_key_protection(
    request: Request,
    x_api_key: str = Header(default=None, alias="X-API-KEY"),
):
    debug = os.getenv("API_KEY_DEBUG", "").lower() in ("1", "true", "yes")
    path = request.url.path
    if debug:
        logger.info("API key check: path=%s header_present=%s", path, bool(x_api_key))

    if path in _ALLOWLIST_PATHS or path.startswith(_CALLBACK_PREFIX):
        if debug:
            logger.info("API key check: allowlisted path=%s", path)
        return

    valid_keys = get_api_keys(request)
    candidate = (x_api_key or "").strip()

    ok = bool(candidate) and any(hmac.compare_digest(candidate, k) for k in valid_keys)
    if debug:
        logger.info("API key check: path=%s ok=%s configured_keys=%d", path, ok, len(valid_keys))

    if not ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key",
        )


async def ip_filter_protection(request: Request):
    ip_filter: IPFilter = request.app.state.services.ip_filter
    client_ip = request.client.host if request.client else ""
    denial = await ip_filter.check(client_ip)
    if denial is not None:
        logger.warning("Request blocked: ip=%s path=%s code=%s", client_ip, request.url.path, denial)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"kind": denial, "message": "Access denied for this IP address"},
        )
