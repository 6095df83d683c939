"""
Main FastAPI application entry point.
Configures and initializes the Media Upload Orchestrator API.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from mangum import Mangum
from src.core.config import settings
from src.core.dependencies import get_http_client, get_stale_session_reaper
from src.core.exception_handler import register_exception_handlers
from src.api.routes import health_routes, upload_routes

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    reaper = get_stale_session_reaper()
    reaper.start()
    yield
    await reaper.stop()
    await get_http_client().aclose()


# Create FastAPI application
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Resumable chunked media uploads to video and social platforms",
    root_path=f"/{settings.environment}",
    lifespan=lifespan
)

# Register exception handlers
register_exception_handlers(app)

# Register routes
app.include_router(health_routes.router)
app.include_router(upload_routes.router)


# Middleware to log request paths
@app.middleware("http")
async def log_request(request: Request, call_next):
    logger.info("Request: %s %s", request.method, request.url.path)
    response = await call_next(request)
    return response

# Lambda handler for AWS; the scheduled reaper Lambda sweeps instead of a background task
handler = Mangum(app, lifespan="off")


# For local development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
