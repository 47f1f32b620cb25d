"""
app/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Registers API routes (bridge relay)
- No business logic should be written here
- Manages application lifecycle (startup/shutdown)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from app.core.config import settings, validate_settings
from app.core.logging import setup_logging, get_logger
from app.core.errors import add_exception_handlers
from app.services.crm_client import close_crm_client
from app.api import bridge

APP_VERSION = "1.0.0"

# Initialize logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("🚀 Starting Telegram Ads Bridge...")
    
    try:
        validate_settings()
        logger.info("✅ Configuration validated")
        
        if not settings.LEADTEH_WEBHOOK_URL:
            logger.warning("⚠️ LEADTEH_WEBHOOK_URL is not set, inner webhook calls will fail")
        if settings.verify_init_data:
            logger.info("🔐 initData signature verification enabled")
        
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Auth order: {', '.join(settings.LEADTEH_AUTH_ORDER)}")
        
    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise
    
    yield  # Application runs here
    
    logger.info("🛑 Shutting down Telegram Ads Bridge...")
    
    try:
        await close_crm_client()
        logger.info("✅ CRM client closed")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


app = FastAPI(
    title="Telegram Ads Bridge",
    description="Forwards Telegram Mini App attribution to the Leadteh CRM",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    
    # CRM calls are bounded by CRM_TIMEOUT_SECONDS each
    if process_time > 5.0:
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )
    
    return response


add_exception_handlers(app)

app.include_router(bridge.router, prefix=settings.API_PREFIX, tags=["Bridge"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "Telegram Ads Bridge",
        "version": APP_VERSION,
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Reports whether the CRM integration is configured.
    The CRM itself is not called.
    """
    checks = {
        "crm_api_key": "configured" if settings.LEADTEH_API_KEY else "missing",
        "crm_webhook": "configured" if settings.LEADTEH_WEBHOOK_URL else "missing",
        "init_data_verification": "enabled" if settings.verify_init_data else "disabled",
    }
    degraded = checks["crm_api_key"] == "missing" or checks["crm_webhook"] == "missing"
    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": APP_VERSION,
        "checks": checks,
    }


@app.get("/ready", tags=["Health"])
async def readiness_check():
    """
    Readiness probe - indicates if app is ready to receive traffic.
    """
    try:
        validate_settings()
        return {"status": "ready"}
    except ValueError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e)}
        )


@app.get("/live", tags=["Health"])
async def liveness_check():
    """
    Liveness probe - indicates if app is alive.
    """
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
