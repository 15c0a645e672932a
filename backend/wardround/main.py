# /backend/wardround/main.py

import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pymongo.errors import DuplicateKeyError
from wardround.config import settings
from wardround.database import connect_to_mongo, close_mongo_connection, ensure_indexes
from wardround.routes import ai, auth, patients
from wardround.services.audit_service import audit_service
from wardround.services.reconciliation import ReconciliationError
from wardround.services.schema_coercer import CoercionError
from wardround.utils.rate_limit import RateLimitMiddleware

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events"""
    # Startup
    print("🚀 Starting up...")
    settings.validate_for_startup()
    await connect_to_mongo()
    await ensure_indexes()
    print("✅ Application ready!")
    yield
    # Shutdown
    print("🛑 Shutting down...")
    await audit_service.drain()
    await close_mongo_connection()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Ward Rounding API: patients, handoff and AI document extraction",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)

# Exception handlers

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Validation Error", "errors": errors})

@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), "field")
    return JSONResponse(status_code=400, content={"message": f"Duplicate value for {field}"})

@app.exception_handler(CoercionError)
@app.exception_handler(ReconciliationError)
async def record_error_handler(request: Request, exc: ValueError):
    logger.warning(f"Rejected records on {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"message": str(exc)})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    content = {"message": "Internal Server Error"}
    if settings.DEBUG:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Include routers
app.include_router(auth.router, prefix="/api")
app.include_router(patients.router, prefix="/api")
app.include_router(ai.router, prefix="/api")

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Welcome to the Ward Rounding API",
        "version": settings.VERSION,
        "docs": "/docs"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.VERSION
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "wardround.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
