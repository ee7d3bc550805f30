"""PostPulse FastAPI application.

Serves the popular-post endpoints and drives the reconciliation scheduler
in the same process.
"""

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request

from postpulse import __version__
from postpulse.core.db import AsyncSessionLocal, async_engine, create_all, init_db
from postpulse.core.errors import StoreError
from postpulse.core.logging import get_logger, setup_logging
from postpulse.core.schemas import PostOut
from postpulse.core.settings import settings
from postpulse.core.store import PostStore
from postpulse.ingestor.pipeline import run_reconciliation_pass
from postpulse.ingestor.reconciler import Reconciler
from postpulse.ingestor.scheduler import ReconcileScheduler
from postpulse.ingestor.twitter import SearchFetcher
from postpulse.ranking.windows import WINDOWS, most_popular

# Setup logging
setup_logging("postpulse")
logger = get_logger(__name__)

app = FastAPI(title="PostPulse", version=__version__, description="Popular posts for a search query")


def build_scheduler(fetcher: SearchFetcher, store: PostStore) -> ReconcileScheduler:
    """Wire fetcher, reconciler and store into a scheduler for the configured query."""
    reconciler = Reconciler(
        store,
        update_concurrency=settings.update_concurrency,
        batch_lookups=settings.batch_lookups,
    )

    async def run_pass():
        return await run_reconciliation_pass(settings.search_query, fetcher, reconciler)

    return ReconcileScheduler(run_pass, settings.fetch_interval_seconds)


def get_store(request: Request) -> PostStore:
    """Store shared with the scheduler, created on first use if startup did not run."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = PostStore(AsyncSessionLocal, timeout=settings.store_timeout_seconds)
        request.app.state.store = store
    return store


def get_scheduler(request: Request) -> ReconcileScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


def check_manual_run_enabled():
    """Check if manual runs are enabled via settings."""
    if not settings.allow_manual_run:
        raise HTTPException(
            status_code=403,
            detail="Manual runs are disabled. Set ALLOW_MANUAL_RUN=true to enable."
        )
    return True


async def _popular(store: PostStore, window_key: str):
    try:
        posts = await most_popular(store, WINDOWS[window_key], limit=settings.popular_limit)
    except StoreError as e:
        logger.error(
            f"Popular query failed for window {window_key}: {e.message}",
            extra={"error_kind": e.kind, "operation": e.operation, "window": window_key}
        )
        raise HTTPException(status_code=503, detail="Post store unavailable")
    return [PostOut.model_validate(post) for post in posts]


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"ok": True, "service": "postpulse"}


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "postpulse",
        "version": __version__,
        "query": settings.search_query,
        "manual_run_enabled": settings.allow_manual_run,
        "endpoints": {
            "health": "/healthz",
            "status": "/status",
            "popular": [f"/most-popular-{key}" for key in WINDOWS],
            "run": "/run (POST)" if settings.allow_manual_run else "/run (disabled)",
        },
    }


@app.get("/most-popular-7-hours", response_model=list[PostOut])
async def most_popular_7_hours(store: PostStore = Depends(get_store)):
    return await _popular(store, "7-hours")


@app.get("/most-popular-7-days", response_model=list[PostOut])
async def most_popular_7_days(store: PostStore = Depends(get_store)):
    return await _popular(store, "7-days")


@app.get("/most-popular-7-weeks", response_model=list[PostOut])
async def most_popular_7_weeks(store: PostStore = Depends(get_store)):
    return await _popular(store, "7-weeks")


@app.get("/most-popular/{window}", response_model=list[PostOut])
async def most_popular_in_window(window: str, store: PostStore = Depends(get_store)):
    """Popular posts for any known window key."""
    if window not in WINDOWS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown window {window!r}, expected one of {sorted(WINDOWS)}"
        )
    return await _popular(store, window)


@app.get("/status")
async def scheduler_status(scheduler: ReconcileScheduler = Depends(get_scheduler)):
    """Scheduler state and recent pass results."""
    return scheduler.status()


@app.post("/run")
async def run_now(
    scheduler: ReconcileScheduler = Depends(get_scheduler),
    _: bool = Depends(check_manual_run_enabled)
):
    """Run one reconciliation pass now."""
    logger.info("Manual reconciliation pass requested", extra={"endpoint": "/run"})
    result = await scheduler.trigger(wait=False)
    if result is None:
        raise HTTPException(status_code=409, detail="A reconciliation pass is already in progress")
    return result.to_dict()


@app.on_event("startup")
async def startup_event():
    """Prepare the store and start the scheduler."""
    logger.info(
        "Starting postpulse service",
        extra={"version": __version__, "scheduler_enabled": settings.scheduler_enabled}
    )
    await init_db(async_engine)
    await create_all(async_engine)

    fetcher = SearchFetcher.from_settings(settings)
    store = PostStore(AsyncSessionLocal, timeout=settings.store_timeout_seconds)
    scheduler = build_scheduler(fetcher, store)

    app.state.fetcher = fetcher
    app.state.store = store
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler and release the HTTP client."""
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.stop()
    fetcher = getattr(app.state, "fetcher", None)
    if fetcher is not None:
        await fetcher.aclose()
    await async_engine.dispose()
    logger.info("postpulse service stopped")


if __name__ == "__main__":
    logger.info("Starting postpulse service via uvicorn")
    uvicorn.run(
        "postpulse.app:app",
        host=settings.service_host,
        port=settings.service_port or 3000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
