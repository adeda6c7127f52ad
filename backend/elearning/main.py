import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .logging_config import configure_logging
from .migration import MigrationEngine
from .paths import get_registry
from .routes import get_store, router
from .store import DocumentStore


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.migrate_on_startup:
        engine = MigrationEngine(get_store(), get_registry())
        report = await engine.initialize_database()
        if report is not None and not report["success"]:
            logger.warning("Startup migration finished with errors: %s", report["message"])
    yield


app = FastAPI(title="E-learning Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)

settings_snapshot = get_settings()
logger.info(
    "Backend starting with %s store (canonical root %s, legacy root %s)",
    settings_snapshot.store_backend,
    settings_snapshot.root_namespace,
    settings_snapshot.legacy_namespace,
)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "store": settings.store_backend}


@app.get("/healthz/store")
async def store_health(
    settings: Settings = Depends(get_settings),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    try:
        canonical = await store.exists(settings.root_namespace)
        legacy = await store.exists(settings.legacy_namespace)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Store health check failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {
        "status": "ok",
        "backend": settings.store_backend,
        "canonical_root_present": canonical,
        "legacy_root_present": legacy,
    }
