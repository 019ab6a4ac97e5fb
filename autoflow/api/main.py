"""FastAPI application factory with lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from autoflow.config import config, configure_logging
from autoflow.core.runtime import Runtime, build_runtime
from autoflow.version import __version__

logger = logging.getLogger(__name__)

_EVICTION_INTERVAL_SECONDS = 3600


async def _evict_forever(runtime: Runtime) -> None:
    """Drop settled runs past the retention window, once an hour."""
    while True:
        await asyncio.sleep(_EVICTION_INTERVAL_SECONDS)
        try:
            await runtime.ledger.evict_expired()
        except Exception as exc:
            logger.warning(f"[API] Run eviction failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # ── Startup ──
    logger.info(f"autoflow v{__version__} starting...")

    if getattr(app.state, "runtime", None) is not None:
        # pre-wired (tests, embedding)
        yield
        return

    # 1. Database
    from autoflow.db.database import init_db, make_engine, make_session_factory
    from autoflow.db.repository import Repository
    engine = make_engine()
    await init_db(engine)
    async_session = make_session_factory(engine)
    app.state.async_session = async_session
    repository = Repository(async_session)

    # 2. Redis claim guard (multi-worker deployments)
    claim_guard = None
    redis_client = None
    if config.redis_claims_enabled:
        from autoflow.cache.claims import RedisClaimGuard
        from autoflow.cache.redis_client import RedisClient
        redis_client = RedisClient(config.redis_url)
        claim_guard = RedisClaimGuard(redis_client)
    app.state.redis = redis_client

    # 3. Messaging gateway
    from autoflow.actions.gateway import HttpMessagingGateway
    gateway = HttpMessagingGateway(
        config.gateway_url,
        token=config.gateway_token,
        timeout_seconds=config.gateway_timeout_seconds,
    )

    # 4. Engine
    runtime = build_runtime(config, repository=repository, gateway=gateway, claim_guard=claim_guard)
    app.state.runtime = runtime
    evictor = asyncio.create_task(_evict_forever(runtime))

    logger.info(f"autoflow v{__version__} ready")

    yield

    # ── Shutdown ──
    logger.info("autoflow shutting down...")
    evictor.cancel()
    await gateway.close()
    if redis_client is not None:
        await redis_client.close()
    await engine.dispose()


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Pre-wired engine. When given, the lifespan does not connect to
                 the database, Redis or the gateway.
    """
    configure_logging()
    app = FastAPI(
        title="autoflow",
        description="WhatsApp workflow automation execution engine.",
        version=__version__,
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    from autoflow.api.routes import health, runs, webhooks, workflows
    app.include_router(webhooks.router, prefix="/v1")
    app.include_router(runs.router, prefix="/v1")
    app.include_router(workflows.router, prefix="/v1")
    app.include_router(health.router)

    return app
