"""
FastAPI application - Main entry point

    uvicorn policy_gateway.api.main:create_app --factory
"""

from dotenv import load_dotenv

load_dotenv()

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from policy_gateway import __version__
from policy_gateway.api.dependencies import api_key_protection, ip_filter_protection
from policy_gateway.api.endpoints.payments import payments_api
from policy_gateway.api.endpoints.policies import policies_api
from policy_gateway.api.endpoints.rating import rating_api
from policy_gateway.api.services import GatewayServices, build_services
from policy_gateway.error_handler import ErrorHandler
from policy_gateway.errors import GatewayError
from policy_gateway.utils.config_loader import load_gateway_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

error_handler = ErrorHandler()


def create_app(services: Optional[GatewayServices] = None) -> FastAPI:
    if services is None:
        services = build_services(load_gateway_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down policy gateway")
        services.close()

    app = FastAPI(
        title="Policy Payment Gateway API",
        description="Premium rating and policy payment lifecycle",
        version=__version__,
        lifespan=lifespan,
        dependencies=[Depends(ip_filter_protection), Depends(api_key_protection)],  # protect everything by default
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rating_api, prefix="/api/v1/rating", tags=["Rating"])
    app.include_router(payments_api, prefix="/api/v1/payments", tags=["Payments"])
    app.include_router(policies_api, prefix="/api/v1/policies", tags=["Policies"])

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        status_code, payload = error_handler.handle_exception(exc, {"path": request.url.path})
        return JSONResponse(status_code=status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        status_code, payload = error_handler.handle_exception(exc, {"path": request.url.path})
        return JSONResponse(status_code=status_code, content=payload)

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "service": "Policy Payment Gateway API",
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Detailed health check (storage, rate cache)."""
        return {
            "status": "healthy",
            "storage": services.storage,
            "integrations": services.config.integrations.mode,
            "rate_cache": {"redis": services.version_source.ping()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
