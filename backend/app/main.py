import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from .api import access, admin, user
from .config import settings
from .core.exceptions import (
    ERR_GEOLOCATION_FAILED,
    ERR_INVALID_CIDR,
    ERR_IP_KICK_FAILED,
    IPRestrictionError,
)
from .database import Base, SessionLocal, engine
from .services.geolocation import GeolocationService
from .services.ip_restriction import IPRestrictionService
from .services.notifications import LoggingNotifier, NotificationDispatcher
from .utils.geo import GeoReaderSlot
from .utils.validators import get_client_ip

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "NOT_FOUND": 404,
    ERR_INVALID_CIDR: 400,
    ERR_IP_KICK_FAILED: 500,
    ERR_GEOLOCATION_FAILED: 502,
}


def build_ip_service(session_factory=SessionLocal) -> IPRestrictionService:
    """Wire the IP restriction service from the environment settings"""
    reader_slot = GeoReaderSlot.from_config(settings.GEOIP_PROVIDER, settings.GEOIP_DATABASE_PATH)
    geo_service = GeolocationService(
        session_factory,
        reader_slot,
        cache_ttl=timedelta(hours=settings.GEO_CACHE_TTL_HOURS),
        cache_empty_results=settings.GEO_CACHE_EMPTY_RESULTS
    )
    dispatcher = NotificationDispatcher(
        LoggingNotifier(),
        ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")
    )

    service = IPRestrictionService(session_factory, geo_service, dispatcher)
    service.load_settings()
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A service injected beforehand (tests) is left alone
    owns_service = getattr(app.state, "ip_service", None) is None
    if owns_service:
        Base.metadata.create_all(bind=engine)
        app.state.ip_service = build_ip_service()
        logger.info("IP restriction service started (geo available: %s)",
                    app.state.ip_service.geo_service.is_available())

    yield

    if owns_service:
        app.state.ip_service.close()
        app.state.ip_service = None
        logger.info("IP restriction service stopped")


# Initialize FastAPI app
app = FastAPI(
    title="IPGate",
    description="Per-account IP restriction service for proxy subscriptions",
    version="1.0.0",
    lifespan=lifespan
)

# Setup rate limiter
app.state.limiter = user.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IPRestrictionError)
async def ip_restriction_error_handler(request: Request, exc: IPRestrictionError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 400)
    if status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": {"code": "SERVICE_UNAVAILABLE", "message": "Storage temporarily unavailable"}}
    )


@app.middleware("http")
async def record_failed_attempts(request: Request, call_next):
    """Count 401/403 API responses per client IP and auto-blacklist repeat offenders"""
    response = await call_next(request)

    if response.status_code not in (401, 403) or not request.url.path.startswith("/api"):
        return response

    service = getattr(request.app.state, "ip_service", None)
    if service is None:
        return response

    client_ip = get_client_ip(request)
    reason = f"HTTP {response.status_code} on {request.url.path}"
    try:
        await run_in_threadpool(service.record_failed_attempt, client_ip, reason)
        if await run_in_threadpool(service.check_auto_blacklist, client_ip):
            logger.warning("IP %s auto-blacklisted (%s)", client_ip, reason)
    except SQLAlchemyError as e:
        logger.error("Failed to record failed attempt from %s: %s", client_ip, e)

    return response


# Include routers
app.include_router(access.router, prefix="/api")
app.include_router(user.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    service = getattr(app.state, "ip_service", None)
    return {
        "status": "healthy" if service is not None else "starting",
        "service": "IPGate",
        "geo_available": service.geo_service.is_available() if service is not None else False,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
