import logging

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response

from repolens.api.middleware.auth import AuthMiddleware
from repolens.api.middleware.logging import RequestLoggingMiddleware
from repolens.api.routes.scans import router as scans_router
from repolens.config import Settings, get_settings
from repolens.core.fetcher import RepositoryFetcher
from repolens.db.session import AsyncSessionLocal
from repolens.services.gemini import GeminiClient
from repolens.services.history import HistorySummarizer
from repolens.services.quota import QuotaTracker
from repolens.services.scan_queue import ScanQueue
from repolens.services.scan_store import ScanStore
from repolens.services.submission import ScanSubmissionService

settings = get_settings()

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="RepoLens API",
    description="AI-assisted assessment of public source repositories",
    version="1.0.0",
    docs_url="/v1/docs",
    openapi_url="/v1/openapi.json",
)

app.add_middleware(AuthMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(scans_router)

# Services are stored on app state so routes and tests can reach them
app.state.redis = None
app.state.auth_verifier = None


def wire_services(
    target: FastAPI,
    config: Settings,
    redis_client: Redis,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Build the scan pipeline and attach it to ``target.state``."""
    store = ScanStore(session_factory)
    quota = QuotaTracker(
        redis_client,
        anonymous_max=config.quota_anonymous_max,
        authenticated_max=config.quota_authenticated_max,
        window_seconds=config.quota_window_hours * 3600,
    )
    fetcher = RepositoryFetcher(
        scratch_dir=config.scratch_dir,
        clone_timeout_seconds=config.clone_timeout_seconds,
        clone_depth=config.clone_depth,
        stale_after_seconds=config.stale_checkout_seconds,
    )
    ai_client = GeminiClient(
        api_key=config.gemini_api_key,
        model=config.gemini_model,
        base_url=config.gemini_base_url,
        max_retries=config.ai_max_retries,
        retry_base_delay=config.ai_retry_base_delay_seconds,
        temperature=config.ai_temperature,
        max_output_tokens=config.ai_max_output_tokens,
        timeout=config.gemini_timeout_seconds,
    )
    queue = ScanQueue(
        store=store,
        quota=quota,
        fetcher=fetcher,
        ai_client=ai_client,
        history=HistorySummarizer(fetcher, ai_client),
        ip_secret=config.secret_key,
        clone_timeout_seconds=config.clone_timeout_seconds,
        clone_depth=config.clone_depth,
    )

    target.state.redis = redis_client
    target.state.store = store
    target.state.quota = quota
    target.state.fetcher = fetcher
    target.state.ai_client = ai_client
    target.state.queue = queue
    target.state.submission = ScanSubmissionService(
        store=store,
        queue=queue,
        quota=quota,
        fetcher=fetcher,
        ip_secret=config.secret_key,
    )


@app.get("/healthz", tags=["health"])
async def health_check() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("RepoLens API starting up")
    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    wire_services(app, settings, redis_client, AsyncSessionLocal)
    logger.info("Scan pipeline initialised")

    removed = await app.state.fetcher.sweep_stale()
    if removed:
        logger.info("Removed %d stale checkouts at startup", removed)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    queue = getattr(app.state, "queue", None)
    if queue is not None:
        await queue.shutdown()
    ai_client = getattr(app.state, "ai_client", None)
    if ai_client is not None:
        await ai_client.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis client closed")
    logger.info("RepoLens API shutting down")
