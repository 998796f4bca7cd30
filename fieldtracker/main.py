from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time
import logging

from fieldtracker.core.config import settings
from fieldtracker.core.database import engine, Base
from fieldtracker.api.v1.router import api_router
from fieldtracker.core.logging_config import setup_logging
import fieldtracker.models  # noqa: F401  registers every table on Base.metadata

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("access")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Field Tracker API server...")
    if settings.AUTO_CREATE_TABLES:
        # Development shortcut; deployments run Alembic migrations instead
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")
    logger.info("Field Tracker API server started successfully")
    yield
    # Shutdown
    logger.info("Shutting down Field Tracker API server...")
    await engine.dispose()


app = FastAPI(
    title="Field Tracker API",
    description="Offline-first field crew time tracking and sync API",
    version="0.1.0",
    lifespan=lifespan,
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        access_logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Duration: {process_time:.3f}s - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        return response
    except Exception:
        # Log unhandled exceptions to error log
        process_time = time.time() - start_time
        logger.error(
            f"Unhandled exception in {request.method} {request.url.path}",
            exc_info=True,
            extra={
                "method": request.method,
                "path": str(request.url.path),
                "client": request.client.host if request.client else 'unknown',
                "duration": f"{process_time:.3f}s"
            }
        )
        # Re-raise to let FastAPI handle it
        raise

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return detailed validation errors to help devices fix their payloads."""
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        field = field.replace("body -> ", "").replace("query -> ", "").replace("path -> ", "")
        message = error["msg"]
        error_type = error["type"]

        if error_type == "missing":
            message = f"{field} is required"

        errors.append({
            "field": field,
            "message": message,
            "type": error_type
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": errors,
            "message": "Please check your input and try again."
        }
    )

# Include routers
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
