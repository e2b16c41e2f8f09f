import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.api.routers import reconcile_router
from backend.core.config import settings
from backend.core.db import init_db
from backend.core.store import reset_engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    # Startup
    init_db()
    logger.info("Database ready")

    yield  # Application runs here

    # Shutdown
    reset_engine()


app = FastAPI(title="Stockflow Reconciliation", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reconcile_router)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "version": VERSION}
