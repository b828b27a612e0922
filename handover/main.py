import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from handover.api import admin_routes
from handover.api.routes import router
from handover.config import Settings, settings
from handover.db.connection import run_migrations
from handover.repositories.submission_repository import SubmissionRepository
from handover.repositories.token_repository import TokenRepository
from handover.services.enrichment_service import EnrichmentClient, EnrichmentConsumer
from handover.services.moderation_service import ModerationService
from handover.services.reconciliation_service import ReconciliationService
from handover.services.redemption_service import RedemptionService
from handover.services.submission_saga import SubmissionSaga
from handover.storage.blob_store import LocalBlobStore


def _configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def wire_services(app: FastAPI, config: Settings) -> None:
    """Build repositories and services from settings and attach them to app.state."""
    run_migrations(config.DB_PATH)
    tokens = TokenRepository(config.DB_PATH)
    submissions = SubmissionRepository(config.DB_PATH)
    blobs = LocalBlobStore(config.BLOB_ROOT)

    redemption = RedemptionService(
        tokens, ttl_hours=config.TOKEN_TTL_HOURS, token_bytes=config.TOKEN_BYTES
    )
    app.state.settings = config
    app.state.blob_store = blobs
    app.state.redemption_service = redemption
    app.state.submission_saga = SubmissionSaga(
        redemption,
        submissions,
        blobs,
        EnrichmentClient(config.ENRICHMENT_URL, timeout=config.ENRICHMENT_TIMEOUT_SECONDS),
        upload_timeout=config.UPLOAD_TIMEOUT_SECONDS,
        claim_timeout=config.CLAIM_TIMEOUT_SECONDS,
    )
    app.state.moderation_service = ModerationService(submissions)
    app.state.enrichment_consumer = EnrichmentConsumer(submissions)
    app.state.reconciliation_service = ReconciliationService(
        submissions, tokens, blobs, grace=timedelta(minutes=config.RECONCILE_GRACE_MINUTES)
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = app.state.settings
    _configure_logging(config)
    logger = logging.getLogger(__name__)
    logger.info(
        "Handover service starting | db=%s | blobs=%s | port=%s",
        config.DB_PATH,
        config.BLOB_ROOT,
        config.PORT,
    )
    wire_services(app, config)
    yield
    await app.state.submission_saga.drain()
    logger.info("Handover service shutting down")


def create_app(config: Settings | None = None) -> FastAPI:
    app = FastAPI(title="Handover", version="1.0.0", lifespan=lifespan)
    app.state.settings = config or settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(admin_routes.router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("handover.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
