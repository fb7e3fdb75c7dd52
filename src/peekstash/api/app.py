"""FastAPI application factory and lifespan.

The lifespan wires the whole process together: logging, database, the
instance registry, every service and the background sync scheduler. Routes
find their collaborators on ``app.state`` (see ``api/dependencies.py``).
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request

from peekstash.api.exception_handlers import register_exception_handlers
from peekstash.api.routers import api_router
from peekstash.application.services import (
    EntityImageCountService,
    ExclusionComputationService,
    ImageGalleryInheritanceService,
    RankingComputeService,
    RecommendationScoringService,
    SceneTagInheritanceService,
    StashInstanceManager,
    StashInstanceService,
    StashSyncService,
    UserHiddenEntityService,
    UserService,
    UserStatsService,
    migrate_env_instance,
)
from peekstash.application.workers import SyncSchedulerWorker
from peekstash.config import Settings, get_settings
from peekstash.infrastructure.observability import (
    RequestLoggingMiddleware,
    configure_logging,
)
from peekstash.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


async def _startup(app: FastAPI, settings: Settings, start_scheduler: bool) -> None:
    settings.ensure_directories()

    db = Database(settings)
    app.state.db = db
    app.state.settings = settings
    await db.create_tables()
    logger.info("Database initialized: %s", settings.database.url)

    # Hey future me - the env STASH__URL is only a seed. Once the instance table has a
    # row, the database is the single source of truth and env values are ignored.
    manager = StashInstanceManager(timeout=settings.stash.timeout)
    async with db.session_scope() as session:
        migrated = await migrate_env_instance(session, settings)
        if migrated is not None:
            logger.info("Seeded instance %s from environment", migrated.id)
    async with db.session_scope() as session:
        await manager.initialize(session)
    app.state.stash_manager = manager
    if not manager.has_instances():
        logger.warning("No Stash instance configured, sync stays idle until one is added")

    # =================================================================
    # Services
    # =================================================================
    session_scope = db.session_scope
    tag_inheritance = SceneTagInheritanceService(session_scope)
    stats_service = UserStatsService(session_scope)
    exclusion_service = ExclusionComputationService(session_scope)

    app.state.stats_service = stats_service
    app.state.exclusion_service = exclusion_service
    app.state.hidden_entity_service = UserHiddenEntityService(session_scope, exclusion_service)
    app.state.ranking_service = RankingComputeService(session_scope)
    app.state.recommendation_service = RecommendationScoringService(session_scope)
    app.state.user_service = UserService(session_scope)
    app.state.instance_service = StashInstanceService(
        session_scope, manager, timeout=settings.stash.timeout
    )
    app.state.sync_service = StashSyncService(
        session_scope,
        manager,
        settings.sync,
        tag_inheritance=tag_inheritance,
        stats_service=stats_service,
        exclusion_service=exclusion_service,
        gallery_inheritance=ImageGalleryInheritanceService(session_scope),
        image_counts=EntityImageCountService(session_scope),
    )

    scheduler = SyncSchedulerWorker(session_scope, app.state.sync_service, settings.sync)
    app.state.scheduler = scheduler
    if start_scheduler:
        await scheduler.start()
    else:
        logger.info("Sync scheduler disabled for this app instance")


async def _shutdown(app: FastAPI) -> None:
    logger.info("Shutting down application")

    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None and scheduler.is_running:
        try:
            await scheduler.stop()
        except Exception as e:
            logger.exception("Error stopping sync scheduler: %s", e)

    sync_service = getattr(app.state, "sync_service", None)
    if sync_service is not None and sync_service.is_syncing():
        sync_service.abort()

    manager = getattr(app.state, "stash_manager", None)
    if manager is not None:
        try:
            await manager.close()
            logger.info("Stash clients closed")
        except Exception as e:
            logger.exception("Error closing Stash clients: %s", e)

    db = getattr(app.state, "db", None)
    if db is not None:
        try:
            await db.close()
            logger.info("Database connection closed")
        except Exception as e:
            logger.exception("Error closing database: %s", e)


def create_app(settings: Settings | None = None, start_scheduler: bool = True) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use, defaults to the cached env settings
        start_scheduler: Start the background sync scheduler in the lifespan
    """
    settings = settings or get_settings()

    # Listen future me, everything before `yield` runs at STARTUP, everything after at
    # SHUTDOWN. The try/finally makes shutdown run even when startup blew up halfway,
    # which is why _shutdown checks every app.state attribute with getattr.
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(
            log_level=settings.log_level,
            json_format=settings.observability.log_json_format,
            app_name=settings.app_name,
        )
        logger.info("Starting application: %s", settings.app_name)
        try:
            await _startup(app, settings, start_scheduler)
            yield
        finally:
            await _shutdown(app)

    app = FastAPI(
        title="peekstash",
        description="Multi-instance Stash catalog mirror",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    @app.get("/health", tags=["Health"])
    async def health(request: Request) -> dict[str, Any]:
        scheduler = getattr(request.app.state, "scheduler", None)
        manager = getattr(request.app.state, "stash_manager", None)
        return {
            "status": "ok",
            "instances": manager.get_instance_count() if manager else 0,
            "scheduler": scheduler.get_stats() if scheduler else None,
        }

    return app
