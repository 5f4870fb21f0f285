"""Tripgen itinerary service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tripgen.config import Settings, settings
from tripgen.api.v1.router import v1_router
from tripgen.api.v1.health import router as health_root_router
from tripgen.api.v1 import health as health_api
from tripgen.api.v1 import jobs as jobs_api
from tripgen.generation.invoker import CONNECT_TIMEOUT_S, GenerationInvoker
from tripgen.generation.policy import MAX_TIMEOUT_INCREMENTS
from tripgen.jobs.in_process_queue import InProcessQueue
from tripgen.jobs.lifecycle import JobLifecycleManager
from tripgen.logging_config import setup_logging
from tripgen.storage.job_store import build_job_store

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings = settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        setup_logging(app_settings)
        logger.info("Starting tripgen on port %s (%s)", app_settings.port, app_settings.environment)

        store = build_job_store(app_settings)
        await store.verify()
        logger.info("Job store: %s", store.health())

        # Longest deadline the timeout policy can produce
        max_generation_s = (
            app_settings.generation_base_timeout_s + MAX_TIMEOUT_INCREMENTS * app_settings.generation_timeout_increment_s
        )
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(max_generation_s + 5.0, connect=CONNECT_TIMEOUT_S))
        invoker = GenerationInvoker(app_settings, client=http_client)
        lifecycle = JobLifecycleManager(store, invoker, settings=app_settings)

        dispatcher = InProcessQueue(
            worker_fn=lifecycle.run,
            on_error=lifecycle.handle_worker_error,
            concurrency=app_settings.max_concurrent_jobs,
            on_cancel=lifecycle.abandon,
        )
        lifecycle.set_dispatcher(dispatcher)
        await dispatcher.start()

        # Wire services into API endpoints
        jobs_api.set_lifecycle(lifecycle)
        health_api.set_store(store)
        app.state.lifecycle = lifecycle

        yield

        logger.info("Shutting down tripgen")
        await dispatcher.stop()
        await http_client.aclose()
        jobs_api.set_lifecycle(None)
        health_api.set_store(None)

    app = FastAPI(
        title="Tripgen",
        description="Asynchronous travel itinerary generation service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount routers
    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()
