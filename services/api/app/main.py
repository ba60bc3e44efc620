"""
Campus Feed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool and create tables if not present
  3. Connect to Redis (a failed ping degrades the cache, not the API)
  4. Start the Kafka producer (kafka change notifier only)
  5. Build the feed cache coordinator and register its invalidation
     handlers on the change notifier, then start consuming
  6. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from app.cache.invalidation import FeedCacheInvalidator
from app.config import settings
from app.database import dispose_db, init_db
from app.dependencies import build_coordinator, build_notifier, build_store
from app.errors import register_exception_handlers
from app.telemetry import setup_tracing, instrument_app
from app.clients.kafka_producer import init_kafka, stop_kafka
from app.clients.redis_client import close_redis, init_redis
from app.routers import communities, feed, posts, users

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Campus Feed API (env=%s)", settings.environment)

    await init_db()
    if settings.cache_backend == "redis":
        await init_redis()
    if settings.change_notifier == "kafka":
        await init_kafka()

    coordinator = build_coordinator(build_store())
    notifier = build_notifier()
    FeedCacheInvalidator(coordinator).register(notifier)
    await notifier.start()

    app.state.coordinator = coordinator
    app.state.notifier = notifier

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await notifier.stop()
    if settings.change_notifier == "kafka":
        await stop_kafka()
    await close_redis()
    await dispose_db()


app = FastAPI(
    title="Campus Feed API",
    description=(
        "Campus social feed: community and visibility scoped posts served "
        "through a read-through Redis cache with event-driven invalidation."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(communities.router, prefix="/communities", tags=["Communities"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
