"""
ImageVault Identity API
FastAPI + MongoDB accounts, sessions, OAuth sign-in and plan quotas
"""
import logging
from contextlib import asynccontextmanager

from imagevault.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(levelname)s:     %(name)s: %(message)s'
)

logger = logging.getLogger(__name__)

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imagevault.database import connect_db, close_db
from imagevault.errors import IdentityError, ValidationError
from imagevault.middleware.auth_middleware import wait_for_background_updates
from imagevault.routers import admin_router
from imagevault.routers import api_key_router
from imagevault.routers import auth_router
from imagevault.routers import oauth_router
from imagevault.routers import usage_router
from imagevault.services.token_service import revocation_cache


# ============================================================================
# Lifespan Context Manager
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    logger.info("Starting ImageVault Identity...")

    await connect_db()

    logger.info("ImageVault Identity API ready")

    yield

    logger.info("Shutting down ImageVault Identity...")

    await wait_for_background_updates()
    await revocation_cache.clear()
    await close_db()

    logger.info("ImageVault Identity API stopped")


# ============================================================================
# Create FastAPI App
# ============================================================================

app = FastAPI(
    title="ImageVault Identity API",
    description="Accounts, sessions, OAuth sign-in, API keys and plan quotas",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters use the same error shape as domain errors"""
    error = ValidationError(
        "Invalid request",
        status_code=422,
        data={"details": jsonable_encoder(exc.errors())}
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "message": "Internal server error"
        }
    )


# ============================================================================
# Health Check Endpoints
# ============================================================================

@app.get("/")
async def root():
    """API health check"""
    return {
        "service": "ImageVault Identity API",
        "version": "1.0.0",
        "status": "healthy",
        "docs": "/api/docs"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(auth_router.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(oauth_router.router, prefix="/api/v1/auth", tags=["OAuth2 Authentication"])
app.include_router(api_key_router.router, prefix="/api/v1/api-keys", tags=["API Keys"])
app.include_router(usage_router.router, prefix="/api/v1", tags=["Plans & Usage"])
app.include_router(admin_router.router, prefix="/api/v1/admin", tags=["Admin"])
