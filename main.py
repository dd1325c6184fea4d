import sys
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from asgi_correlation_id import CorrelationIdMiddleware, correlation_id

from filterpro.logging_setup import setup_logging, logger
from filterpro.store import Store
from filterpro.routes import router
from filterpro.database import connect_to_mongo, close_mongo_connection, get_database, ensure_indexes
from filterpro.services.resolver import DependencyResolver
from filterpro.services.scheduler import SyncScheduler
from filterpro.services.sync import SyncEngine

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Builds the services shared through app.state, starts the sync schedules,
    and stops them again on shutdown.
    """
    setup_logging()
    logger.info("FilterPro starting")

    store = Store()
    app.state.store = store

    try:
        await connect_to_mongo()
        database = get_database()
        await ensure_indexes(database)
    except Exception as e:
        logger.critical(f"MongoDB unavailable at startup: {e}", exc_info=True)
        # Non-zero exit so the orchestrator restarts the container
        sys.exit(1)

    sync_engine = SyncEngine(database, store)
    scheduler = SyncScheduler(database, sync_engine)
    app.state.db = database
    app.state.sync_engine = sync_engine
    app.state.scheduler = scheduler
    app.state.resolver = DependencyResolver(database, sync_engine)

    scheduled = await scheduler.initialize_schedules()
    store.mark_ready()
    logger.info(f"FilterPro ready, {scheduled} datasources scheduled")

    yield

    store.mark_loading()
    await scheduler.shutdown()
    await close_mongo_connection()
    logger.info("FilterPro stopped")

app = FastAPI(
    title="FilterPro API",
    description="Dependency-driven filter options backed by synchronized datasources.",
    version="1.0.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)


async def logging_middleware(request: Request, call_next):
    """
    Logs one line per request and turns uncaught exceptions into a JSON 500
    carrying the request's correlation id.
    """
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.critical(
            f"Unhandled exception on {request.method} {request.url.path}",
            extra={"query": str(request.url.query), "error": str(e)},
            exc_info=True,
        )
        return ORJSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred.",
                "correlation_id": correlation_id.get(),
            },
        )

    logger.info(
        f"{request.method} {request.url.path} {response.status_code}",
        extra={
            "query": str(request.url.query),
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return response

# MIDDLEWARE CONFIGURATION
# Added innermost first: the logging middleware runs inside the correlation id context.

app.add_middleware(BaseHTTPMiddleware, dispatch=logging_middleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

#ROUTER INCLUSION
app.include_router(router)
