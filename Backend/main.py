from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import load_settings
from crud import TicketStore
from database import create_db_engine, create_tables
from app_utils.deduplication import DedupEngine
from app_utils.region_lock import RegionLocks, grid_for_radius
from routers.reports import router as reports_router
from routers.admin import router as admin_router

logger = logging.getLogger(__name__)


def create_app(settings=None):
    """
    Build the API. The store and engine are created per app in the
    lifespan handler and disposed on shutdown; nothing is global.
    """
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # -------------------------------------
    # Startup - Create Database Tables
    # -------------------------------------
    @asynccontextmanager
    async def lifespan(app):
        engine = create_db_engine(settings)
        create_tables(engine)
        store = TicketStore(
            engine,
            region_locks=RegionLocks(grid_for_radius(settings.merge_threshold)),
            lock_timeout=settings.pool_timeout,
        )
        app.state.settings = settings
        app.state.store = store
        app.state.dedup_engine = DedupEngine(store, threshold_m=settings.merge_threshold)
        logger.info(f"Ticket store ready (merge threshold {settings.merge_threshold:g} m)")
        try:
            yield
        finally:
            store.close()
            logger.info("Ticket store closed")

    app = FastAPI(
        title="Civic Ticket API",
        description="Geotagged civic issue reports with proximity deduplication",
        version="1.0.0",
        lifespan=lifespan,
    )

    # -------------------------------------
    # CORS SETTINGS
    # -------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],      # For DEV only, tighten in PROD
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------
    # ROUTERS
    # -------------------------------------
    app.include_router(reports_router)
    app.include_router(admin_router)

    # -------------------------------------
    # Root Endpoint
    # -------------------------------------
    @app.get("/")
    async def root():
        return {
            "message": "Civic Ticket API",
            "endpoints": {
                "reports": "/api/reports",
                "stats": "/api/admin/stats",
            }
        }

    #--------------Health Check Endpoint----------------
    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app
