import logging

from dotenv import load_dotenv

# Load environment variables FIRST - before any other imports
load_dotenv()

# ruff: noqa: E402
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from planner.config import get_settings
from planner.database import initialize_database
from planner.routers.replication import router as replication_router

_settings = get_settings()

# --------------------------------------------------------------------------
# LOGGING CONFIGURATION
# --------------------------------------------------------------------------
#
# - Default log level: INFO
# - Can be set at runtime with LOG_LEVEL env (e.g. LOG_LEVEL=WARNING for CI)
#
_log_level = getattr(logging, _settings.log_level.upper(), None)
if not isinstance(_log_level, int):
    _log_level = logging.INFO
logging.basicConfig(level=_log_level, format="%(levelname)s - %(message)s", handlers=[logging.StreamHandler()])

logger = logging.getLogger(__name__)

app = FastAPI(title="Planner API", redirect_slashes=True)

# ------------------------------------------------------------------
# CORS – open wildcard in dev/tests, restricted in production unless env
# overrides it.  `ALLOWED_CORS_ORIGINS` can contain a comma-separated list.
# ------------------------------------------------------------------

if _settings.auth_disabled:
    cors_origins = ["*"]
else:
    cors_origins = [o.strip() for o in _settings.allowed_cors_origins.split(",") if o.strip()]


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    """Log anything the routers did not translate and answer with a 500."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(replication_router)


@app.on_event("startup")
async def startup_event():
    """Create DB tables if they don't exist."""
    initialize_database()
    logger.info("Database tables initialized")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}
