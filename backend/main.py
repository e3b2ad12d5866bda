"""
FastAPI service for the movie scene orchestrator
"""

import logging
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
import time

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()

from config import settings
from database import SessionLocal, init_db
from routers import cron, webhooks
from schemas import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("application_startup", environment=settings.ENVIRONMENT)

    if settings.is_production and not settings.CRON_SECRET:
        logger.error("cron_secret_missing", message="Cron endpoints will reject every call")

    init_db()

    yield

    logger.info("application_shutdown")


app = FastAPI(
    title="Movie Scene Orchestrator",
    description="Advances multi-scene AI movie projects through generation, narration and assembly",
    version="1.0.0",
    lifespan=lifespan,
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None
    )

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            process_time=f"{time.time() - start_time:.3f}s"
        )
        raise

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time=f"{time.time() - start_time:.3f}s"
    )
    return response


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": str(exc) if settings.DEBUG else None
        }
    )


@app.get("/health", tags=["Health"], response_model=HealthResponse)
def health_check():
    """
    Health check endpoint

    Returns:
        dict: Service status and database connectivity
    """
    database_status = "ok"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_database_unreachable", error=str(e))
        database_status = "unreachable"
    finally:
        db.close()

    return {
        "status": "healthy" if database_status == "ok" else "degraded",
        "database": database_status,
        "environment": settings.ENVIRONMENT,
    }


app.include_router(cron.router)
app.include_router(webhooks.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
