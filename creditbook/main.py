# creditbook/main.py
import logging

from dotenv import load_dotenv

# Cargar variables de entorno desde .env ANTES de cualquier otra cosa
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

# SlowAPI (Rate Limiting)
from slowapi.errors import RateLimitExceeded

from . import __version__
from .api import health as health_api
from .api.credits import main as credits_main_api
from .core.config import get_settings
from .core.errors import NotFoundError, StoreError, ValidationError
from .core.rate_limit import limiter
from .db.engine import create_db_and_tables

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Creditbook", version=__version__)


# --- Database Initialization ---
@app.on_event("startup")
def on_startup():
    """Initialize database tables on application startup"""
    create_db_and_tables()
    logger.info("Database tables initialized")


# --- Configuración de SlowAPI ---
app.state.limiter = limiter


async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        content={"detail": f"Rate limit exceeded: {exc.detail}"}, status_code=429
    )


app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)


# ============================================================================
# --- CORS & TRUSTED HOSTS ---
# ============================================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.hosts)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================================
# --- LEDGER EXCEPTION HANDLERS ---
# ============================================================================
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store unavailable on {request.method} {request.url.path}: {exc.cause!r}")
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable."})


# ============================================================================
# --- ROUTERS INCLUSION ---
# ============================================================================
app.include_router(health_api.router)
app.include_router(credits_main_api.router, prefix="/api", tags=["Credits"])
