# geomayora/main.py
"""
FastAPI entrypoint for the GeoMayora land records API.

Notes:
- Settings come from the environment (.env is loaded by geomayora.config)
- The storage backend is chosen once at startup (remote if reachable, else local)
- The super admin account is created on first run
- Routers are mounted under /api
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from geomayora.config import Settings
from geomayora.db import select_store
from geomayora.migration import LegacyBlobStore
from geomayora.routes.auth import router as auth_router
from geomayora.routes.records import router as records_router
from geomayora.routes.users import router as users_router
from geomayora.services.records import RecordService
from geomayora.services.users import UserService

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="GeoMayora Land Records API")
    app.state.settings = settings

    app.include_router(auth_router, prefix="/api")
    app.include_router(records_router, prefix="/api")
    app.include_router(users_router, prefix="/api")

    # -----------------------------------------------------------------------------
    # CORS configuration
    # -----------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------------
    # Startup / shutdown
    # -----------------------------------------------------------------------------
    @app.on_event("startup")
    async def on_startup():
        store = await select_store(settings)
        app.state.store = store
        app.state.records = RecordService(
            store,
            LegacyBlobStore(settings.legacy_storage_dir),
            page_size=settings.page_size,
        )
        app.state.users = UserService(store, settings.superadmin_username)
        await app.state.users.bootstrap_super_admin(settings.superadmin_email, settings.superadmin_password)
        logger.info("Storage mode: %s", store.status_label())

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.records.drain()
        await app.state.store.close()

    # -----------------------------------------------------------------------------
    # Health & storage status
    # -----------------------------------------------------------------------------
    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/storage/status")
    async def storage_status(request: Request):
        store = request.app.state.store
        return {"backend": store.backend, "label": store.status_label()}

    return app


app = create_app()
