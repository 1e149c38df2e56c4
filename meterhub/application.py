"""
FastAPI application factory for the meter hub
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from meterhub.core.config import settings
from meterhub.core.database import init_db
from meterhub.api.routes import api_router, realtime_router, set_services
from meterhub.services.broadcaster import RealtimeBroadcaster
from meterhub.services.device_registry import DeviceRegistry
from meterhub.services.proxy_gateway import ProxyGateway
from meterhub.services.store import MeterStore

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[MeterStore] = None,
    proxy_gateway: Optional[ProxyGateway] = None,
    static_dir: Optional[str] = None,
) -> FastAPI:
    """Build the application.

    Without an injected store the configured database is migrated and used.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info("Starting meter hub...")

        meter_store = store
        if meter_store is None:
            init_db()
            meter_store = MeterStore()
        meter_store.ensure_default_settings()

        registry = DeviceRegistry()
        broadcaster = RealtimeBroadcaster(meter_store, registry)
        gateway = proxy_gateway or ProxyGateway()
        set_services(meter_store, registry, broadcaster, gateway)
        app.state.broadcaster = broadcaster

        logger.info("Meter hub started successfully!")

        yield

        # Cleanup
        logger.info("Shutting down meter hub...")
        await gateway.close()
        logger.info("Meter hub stopped.")

    app = FastAPI(
        title="MeterHub",
        description="Meter reading ingestion, realtime fan-out and a LAN-only device proxy",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")
    app.include_router(realtime_router)

    # Serve the dashboard when its files are present
    static_path = Path(static_dir if static_dir is not None else settings.STATIC_DIR)
    if static_path.is_dir():
        app.mount("/", StaticFiles(directory=str(static_path), html=True), name="static")
    else:
        logger.debug("Static directory %s not found; dashboard not served", static_path)

    return app
