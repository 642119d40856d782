import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.cache.layer import cache_layer
from app.core.config import get_settings
from app.core.errors import AppError, ValidationFailed
from app.core.logging import configure_logging
from app.database import dispose_engine
from app.middleware.security import (
    RateLimiter,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from app.routers import projects, tasks, users

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await cache_layer.init_cache()
    yield
    await cache_layer.close()
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    description="Project management API with PostgreSQL, Redis cache-aside and Celery provisioning",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

rate_limiter = RateLimiter(cache_layer, settings)

# Starlette runs the last added middleware first
app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message, "errors": exc.errors},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailed.from_pydantic(exc)
    return await validation_failed_handler(request, error)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"},
    )


# Include routers
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(users.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to the Project Management API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
