"""
TapCoin - FastAPI Application

Главная точка входа backend.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from .api import admin, auth, game, leaderboard, promo, tasks
from .config import settings
from .database import close_redis, init_db
from .errors import EconomyError
from .middleware.security import add_security_headers, limiter


logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


# ============================================
# LIFESPAN
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events."""
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}, debug: {settings.DEBUG}")
    if settings.TASK_VERIFICATION_BYPASS and settings.is_production:
        logger.warning("TASK_VERIFICATION_BYPASS is ignored in production")

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down...")
    await close_redis()
    logger.info("Redis closed")


# ============================================
# APP
# ============================================

app = FastAPI(
    title=settings.APP_NAME,
    description="TapCoin API - Telegram Mini App clicker",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# Rate limiter state
app.state.limiter = limiter


# ============================================
# MIDDLEWARE
# ============================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(add_security_headers)


# ============================================
# ERROR HANDLERS
# ============================================

@app.exception_handler(EconomyError)
async def economy_error_handler(request: Request, exc: EconomyError):
    """Ожидаемый отказ экономики: код + сообщение, состояние не изменено."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.to_detail()},
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handler для rate limit ошибок."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик ошибок."""
    logger.exception(f"[Error] Unhandled error on {request.method} {request.url.path}")
    detail = str(exc) if settings.DEBUG else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"detail": detail}
    )


# ============================================
# ROUTES
# ============================================

api_prefix = settings.API_PREFIX

app.include_router(auth.router, prefix=api_prefix)
app.include_router(game.router, prefix=api_prefix)
app.include_router(tasks.router, prefix=api_prefix)
app.include_router(promo.router, prefix=api_prefix)
app.include_router(leaderboard.router, prefix=api_prefix)
app.include_router(admin.router, prefix=api_prefix)


# ============================================
# HEALTH CHECK
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tapcoin.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
