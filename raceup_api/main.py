import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from raceup_api.api.v1 import admin, auth, tracking

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("raceup_api").setLevel(logging.DEBUG)
from raceup_api.api.deps import get_token_codec
from raceup_api.config import settings
from raceup_api.core.errors import AuthError
from raceup_api.core.rate_limit import limiter
from raceup_api.db.session import async_session_maker, init_db
from raceup_api.services.auth_store import SqlAuthStore
from raceup_api.services.http_client import close_http_client, init_http_client
from raceup_api.services.sessions import SessionOrchestrator

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_refresh_token_sweep():
    """Delete expired refresh tokens for all users."""
    async with async_session_maker() as session:
        sessions = SessionOrchestrator(SqlAuthStore(session), get_token_codec())
        removed = await sessions.sweep_expired_refresh_tokens()
        await session.commit()
    if removed:
        logger.info("Refresh token sweep removed %d expired tokens", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_jwt_config()
    await init_db()
    init_http_client(timeout=settings.oauth_request_timeout_seconds)
    scheduler.add_job(
        scheduled_refresh_token_sweep,
        "interval",
        minutes=settings.refresh_token_sweep_minutes,
        id="refresh_token_sweep",
        replace_existing=True,
    )
    scheduler.start()
    yield
    scheduler.shutdown()
    await close_http_client()


app = FastAPI(
    title="RaceUp API",
    description="Accounts, sessions (JWT + rotating refresh tokens), Google/Apple sign-in, admin and analytics",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details stay in the server log, never in the response
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "INTERNAL_ERROR"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    # Local frontends on any port
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)
app.include_router(auth.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(tracking.router, prefix="/api")

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/api/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
