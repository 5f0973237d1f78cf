#!/usr/bin/env python3
"""
BurnWatch Sync Service - FastAPI Backend
Exposes account sync and webhook connection tests over HTTP
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..config.settings import BurnWatchConfig, get_config
from ..models import AccountStatus
from ..notifications.dispatcher import WebhookTestResult
from ..services import ServiceContainer
from ..sync.errors import AccountNotFoundError, SyncRateLimitError

logger = logging.getLogger(__name__)


class HealthCheck(BaseModel):
    status: str
    timestamp: datetime
    version: str


class SyncResponse(BaseModel):
    status: AccountStatus
    last_synced_at: datetime | None = None
    last_sync_error: str | None = None
    rows_upserted: int = 0


class WebhookTestRequest(BaseModel):
    channel: Literal["slack", "discord"]
    webhook_url: str | None = None


def create_app(services: ServiceContainer | None = None, config: BurnWatchConfig | None = None) -> FastAPI:
    """
    Create the API application.

    Args:
        services: Pre-built services; when omitted they are connected to
            PostgreSQL during startup and closed on shutdown
        config: Configuration used when connecting services
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        logger.info("Starting BurnWatch Sync Service...")
        owned = services is None
        if owned:
            app.state.services = await ServiceContainer.connect(config or get_config())
        logger.info("✅ BurnWatch Sync Service started successfully")
        yield

        logger.info("Shutting down BurnWatch Sync Service...")
        if owned:
            await app.state.services.close()
        else:
            await app.state.services.post_sync.drain()

    app = FastAPI(
        title="BurnWatch Sync Service",
        version=__version__,
        description="Cloud spend sync and anomaly alerting",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health/live", response_model=HealthCheck)
    async def health_live():
        """Liveness probe"""
        return HealthCheck(status="alive", timestamp=datetime.now(), version=__version__)

    @app.post("/api/organizations/{organization_id}/accounts/{account_id}/sync", response_model=SyncResponse)
    async def sync_account(organization_id: str, account_id: str, request: Request):
        """Sync one cloud account and report its status"""
        container: ServiceContainer = request.app.state.services
        try:
            result = await container.orchestrator.sync(organization_id, account_id)
        except AccountNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SyncRateLimitError as e:
            headers = None
            if e.retry_after_seconds is not None:
                headers = {"Retry-After": str(e.retry_after_seconds)}
            raise HTTPException(
                status_code=429,
                detail={"reason": e.reason.value, "message": e.message},
                headers=headers,
            )

        return SyncResponse(**result.model_dump())

    @app.post("/api/organizations/{organization_id}/notifications/test", response_model=WebhookTestResult)
    async def test_notification_webhook(organization_id: str, body: WebhookTestRequest, request: Request):
        """Send a connection test message to a Slack or Discord webhook"""
        container: ServiceContainer = request.app.state.services
        return await container.dispatcher.test_webhook(organization_id, body.channel, body.webhook_url)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": "BurnWatch Sync Service",
            "version": __version__,
            "status": "running",
            "endpoints": {
                "health": "/api/health/live",
                "sync": "/api/organizations/{organization_id}/accounts/{account_id}/sync",
                "webhook_test": "/api/organizations/{organization_id}/notifications/test",
                "docs": "/docs",
            },
        }

    return app


def main():
    """Run the API with uvicorn."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    api_config = get_config().settings.get("api", {}) or {}
    uvicorn.run(
        "burnwatch.api.app:create_app",
        factory=True,
        host=api_config.get("host", "0.0.0.0"),
        port=int(api_config.get("port", 8000)),
        log_level="info",
    )


if __name__ == "__main__":
    main()
