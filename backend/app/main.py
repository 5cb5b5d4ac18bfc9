"""
Catalog Copilot Backend — natural-language control of a shop catalog.

ARCHITECTURE:
- Telegram Bot: owner types free-text commands, gets streamed answers
- FastAPI Backend: same commands over HTTP (/agent/*)
- Catalog REST service: source of truth for products (we never store them)
- SQL DB: session state only (history, AiContext, pending operations)

SAFETY MODEL:
- Ambiguous product names always go back to the user as a choice
- Bulk price changes and delete-all always wait for an explicit confirm
- LLM picks tools; validation and catalog writes are deterministic code

One command in flight per session. Human-in-the-loop for destructive changes.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from app.api.routes import agent
from app.core.config import settings
from app.core.rate_limiter import RateLimitMiddleware
from app.db.init_db import init_db
from app.telegram.bot import start_bot_background, stop_bot_background

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# httpx logs every Telegram poll with the bot token in the URL
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Initialize session state tables
    2. Start Telegram bot polling (if token provided)

    Shutdown:
    1. Stop Telegram bot gracefully
    """
    try:
        print("[*] Initializing database...")
        if settings.SESSION_BACKEND == "sql":
            init_db()
        print(f"[OK] Session backend: {settings.SESSION_BACKEND}")

        if settings.TELEGRAM_BOT_TOKEN:
            print("[*] Starting Telegram bot...")
            start_bot_background()
            print("[OK] Bot started")
        else:
            print("[WARN] Telegram bot disabled (no token)")
    except Exception as e:
        logger.error(f"[Startup] {e}", exc_info=True)
        raise

    yield

    try:
        if settings.TELEGRAM_BOT_TOKEN:
            stop_bot_background()
    except Exception as e:
        logger.error(f"[Shutdown] {e}", exc_info=True)


app = FastAPI(
    title="Catalog Copilot API",
    description="Natural-language catalog commands. Clarify → Confirm → Execute.",
    version="0.1.0",
    lifespan=lifespan,
)

# SECURITY: Trust only specific hosts
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=[
        "localhost",
        "127.0.0.1",
        "testserver",
    ]
)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ],
    max_age=600,  # Cache preflight for 10 minutes
    expose_headers=["Content-Type", "Retry-After"],
)

# SECURITY: Per-IP rate limiting for the HTTP surface (per-session limits live in CommandGuard)
app.add_middleware(RateLimitMiddleware)

# SECURITY: Add security headers middleware
@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    return response

app.include_router(agent.router, prefix="/agent", tags=["agent"])


@app.get("/health")
def health():
    return {
        "status": "ok",
        "session_backend": settings.SESSION_BACKEND,
        "telegram": bool(settings.TELEGRAM_BOT_TOKEN),
    }
