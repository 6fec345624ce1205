import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.application.loyalty import LoyaltyLedger
from app.application.orchestrator import Orchestrator
from app.application.scheduler import SyncScheduler
from app.application.sync_coordinator import ConnectivityState, SyncCoordinator
from app.core.config import settings
from app.domain.errors import (
    InsufficientPointsError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    OrderEngineError,
    OrderValidationError,
    RemoteStoreError,
)
from app.domain.schemas import Product
from app.infrastructure.local_cache import LocalCache
from app.infrastructure.notification_service import NotificationService
from app.interfaces import pos_api
from app.interfaces.IRemoteStore import IRemoteStore

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _build_remote() -> Optional[IRemoteStore]:
    if not settings.DATABASE_URL:
        logger.warning("⚠️ DATABASE_URL not set. Running Offline from the local cache.")
        return None

    # Imported here so an offline terminal never needs the DB driver
    from app.infrastructure.database import bootstrap_schema
    from app.infrastructure.repositories.remote_store import PostgresRemoteStore

    # Retries block with time.sleep, so they run off the event loop.
    # On failure the store creates the tables on its first successful call.
    ready = await asyncio.to_thread(bootstrap_schema)
    return PostgresRemoteStore(schema_ready=ready)


def load_seed_catalog(path: Optional[str] = None) -> List[Product]:
    path = settings.SEED_CATALOG_PATH if path is None else path
    if not path:
        return []
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"❌ Could not read seed catalog {path}: {e}")
        return []
    return [Product.model_validate(p) for p in raw]


def _status_for(exc: OrderEngineError) -> int:
    if isinstance(exc, (InsufficientStockError, InsufficientPointsError, InvalidTransitionError)):
        return 409
    if isinstance(exc, OrderValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, RemoteStoreError):
        return 503
    return 500


def create_app(
    remote: Optional[IRemoteStore] = None,
    cache: Optional[LocalCache] = None,
    notifier: Optional[NotificationService] = None,
    use_remote: bool = True,
    start_scheduler: bool = True,
) -> FastAPI:
    # ---------------------------------------------------------
    # COMPOSITION ROOT
    # ---------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = remote if remote is not None else (await _build_remote() if use_remote else None)
        local = cache if cache is not None else LocalCache(settings.REDIS_URL or None)
        alerts = notifier if notifier is not None else NotificationService()

        coordinator = SyncCoordinator(store, local, seed_products=load_seed_catalog())
        coordinator.on_state_change(
            lambda state, pending: alerts.notify_operator_degraded(pending)
            if state == ConnectivityState.DEGRADED else None
        )
        ledger = LoyaltyLedger(store, local)
        app.state.orchestrator = Orchestrator(coordinator, ledger)

        await coordinator.start()
        scheduler = SyncScheduler(coordinator.sync)
        app.state.scheduler = scheduler
        if start_scheduler:
            scheduler.start()
        logger.info(f"✅ {settings.PROJECT_NAME} ready ({coordinator.state.value})")
        try:
            yield
        finally:
            await scheduler.stop()
            await coordinator.stop()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    @app.exception_handler(OrderEngineError)
    async def order_engine_error(request: Request, exc: OrderEngineError):
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc), "error": type(exc).__name__})

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "error": "ValueError"})

    # Include Routers
    app.include_router(pos_api.router)
    return app


configure_logging()
app = create_app()


def run() -> None:
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
