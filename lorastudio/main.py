"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import DBAPIError

from lorastudio.api import account, billing, generations, health, models
from lorastudio.config import get_settings
from lorastudio.db.session import init_db
from lorastudio.errors import DataStoreUnavailable, ServiceError
from lorastudio.middleware.rate_limit import limiter

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting LoRA Studio API...")

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    logger.info("Shutting down LoRA Studio API...")
    from lorastudio.clients.replicate import close_replicate_client

    await close_replicate_client()


app = FastAPI(
    title="LoRA Studio API",
    description="""
## Personalized image generation

Train a private image model from a handful of photos, then generate
images of the trained subject from text prompts.

- **Models**: Start a training job and follow its status
- **Generations**: Generate, list and delete images
- **Billing**: Premium subscriptions through Stripe

### Authentication
Requests are authenticated by the upstream gateway, which forwards the
user identity in the `X-User-Id` (and optionally `X-User-Email`) header.

### Plans
- **Free**: 20 generations per day, 5 models
- **Premium**: 100 generations per day, unlimited models

### Errors
Failures carry a stable `code` and a `retriable` flag:
```
{"error": {"code": "quota_exceeded", "message": "...", "retriable": false}}
```
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render typed service errors with their stable code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    """Connection-level database failures surface as a retriable error."""
    logger.error(f"Database error on {request.url.path}: {exc}")
    err = DataStoreUnavailable()
    return JSONResponse(status_code=err.status_code, content={"error": err.to_dict()})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_error",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
                "retriable": False,
            }
        },
    )


# Include routers
app.include_router(health.router)
app.include_router(account.router)
app.include_router(models.router)
app.include_router(generations.router)
app.include_router(billing.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lorastudio.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
