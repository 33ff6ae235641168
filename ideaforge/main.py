import logging
import sys
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ideaforge.config import settings
from ideaforge.database import init_db
from ideaforge.dependencies import ServiceContainer, get_container
from ideaforge.errors import ErrorKind, PipelineError
from ideaforge.routers import (
    sessions_router,
    spark_router,
    mutations_router,
    features_router,
    synthesis_router,
    refinement_router,
    visuals_router,
    personality_router,
    gallery_router,
)
from ideaforge.websocket import websocket_endpoint

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)

# Set specific loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PHASE_VIOLATION: 409,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.GENERATION_FAILURE: 502,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PARTIAL_BATCH_FAILURE: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting IdeaForge...")
    logger.info(f"Database: {settings.database_url}")

    await init_db()
    logger.info("Database initialized")

    settings.ensure_outputs_dir()
    logger.info(f"Outputs directory: {settings.outputs_dir}")

    container = get_container()
    health = await container.generator.health()
    if health["status"] == "ok":
        logger.info(f"Generator {health['generator']}: Ready")
    else:
        logger.warning(f"Generator {health['generator']}: DEGRADED - generation calls may fail ({health})")

    logger.info("Startup complete")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="IdeaForge",
    description="Guided product ideation: swipe, mutate, expand, synthesize and refine app ideas",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind.value}: {exc.message}")
    headers = None
    if exc.kind == ErrorKind.RATE_LIMITED and exc.details.get("retry_after"):
        headers = {"Retry-After": str(int(exc.details["retry_after"]))}
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


# Include routers
app.include_router(sessions_router)
app.include_router(spark_router)
app.include_router(mutations_router)
app.include_router(features_router)
app.include_router(synthesis_router)
app.include_router(refinement_router)
app.include_router(visuals_router)
app.include_router(personality_router)
app.include_router(gallery_router)


@app.get("/")
async def root():
    return {
        "name": "IdeaForge API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Check health of the API and the configured generator."""
    generator = await container.generator.health()
    return {
        "status": generator["status"],
        "services": {
            "generator": generator,
            "response_cache": {
                "entries": len(container.response_cache),
                "hits": container.response_cache.hits,
                "misses": container.response_cache.misses,
            },
        },
    }


@app.websocket("/ws/{session_id}")
async def websocket_route(websocket: WebSocket, session_id: str):
    await websocket_endpoint(websocket, session_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ideaforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
