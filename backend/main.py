#!/usr/bin/env python3
"""
DockerFlow Backend - multi-tenant Docker dashboard core
Container/volume reconciliation, quota enforcement, lifecycle actions and alerts

Identity is provided by the upstream authenticating proxy (X-User-* headers).
Every error is answered with a non-2xx status and {"error": "..."}.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import AppConfig, setup_logging, HealthCheckFilter
from database import DatabaseManager
from docker_monitor.client import create_docker_client
from errors import DockerFlowError
from services import build_services

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Validate configuration early to fail fast on misconfiguration
    AppConfig.validate()

    logger.info("Starting DockerFlow backend...")

    # Reapply health check filter to uvicorn access logger (must be done after uvicorn starts)
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())

    db = DatabaseManager(AppConfig.DATABASE_URL)
    client = await asyncio.to_thread(create_docker_client)
    app.state.services = build_services(client, db)

    logger.info("DockerFlow backend started")

    yield

    # Shutdown
    logger.info("Shutting down DockerFlow backend...")
    try:
        client.close()
    except Exception as e:
        logger.warning(f"Error closing Docker client: {e}")
    db.close()
    app.state.services = None
    logger.info("DockerFlow backend shutdown complete")


app = FastAPI(
    title="DockerFlow API",
    version="1.0.0",
    lifespan=lifespan
)

cors_config = AppConfig.CORS_ORIGINS
if cors_config:
    origins_list = [origin.strip() for origin in cors_config.split(',')]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    logger.info(f"CORS configured for specific origins: {origins_list}")
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    logger.info("CORS configured to allow all origins (identity enforced upstream)")


# ==================== Error Handlers ====================

@app.exception_handler(DockerFlowError)
async def dockerflow_exception_handler(request: Request, exc: DockerFlowError):
    """Render the error taxonomy as {"error", "kind"} with the mapped status"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")

    content = {"error": exc.message, "kind": exc.kind}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for Pydantic validation errors.
    Returns user-friendly error messages with field-level details.
    """
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(x) for x in error['loc'])
        errors.append({
            "field": field,
            "message": error['msg'],
            "type": error['type']
        })

    logger.warning(f"Validation failed for {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "error": "Invalid request data",
            "errors": errors
        }
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Unexpected failures (database errors included) still answer with {"error"}"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "kind": "error"}
    )


# ==================== API Routes ====================

from alerts.api import router as alerts_router
from api.containers import router as containers_router
from api.images import router as images_router
from api.monitoring import router as monitoring_router
from api.quotas import router as quotas_router
from api.volumes import router as volumes_router
from audit.activity_routes import router as activity_router

app.include_router(containers_router)
app.include_router(images_router)
app.include_router(volumes_router)
app.include_router(alerts_router)
app.include_router(monitoring_router)
app.include_router(quotas_router)
app.include_router(activity_router)


@app.get("/health")
async def health_check():
    """Health check endpoint - no identity required"""
    return {"status": "healthy", "service": "dockerflow-backend"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=AppConfig.HOST, port=AppConfig.PORT)
