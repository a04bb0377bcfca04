# main.py
import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Settings and monitoring
from settings import get_settings
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Sentry error monitoring (if configured)
if settings.SENTRY_DSN:
    import sentry_sdk
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1,
    )
    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")

# Database initialization
from database import engine, Base
import db_models  # noqa: F401

# Import routers
from routers import square

# Import scheduler
from scheduler import start_scheduler, shutdown_scheduler

# Get the directory where main.py is located (needed for migrations)
BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title=settings.APP_NAME, version="1.0.0")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."}
    )


def run_migrations():
    """Run Alembic migrations to ensure database schema is up to date."""
    try:
        from alembic.config import Config
        from alembic import command

        alembic_ini_path = BASE_DIR / "alembic.ini"
        if not alembic_ini_path.exists():
            raise FileNotFoundError(f"alembic.ini not found at {alembic_ini_path}")

        alembic_cfg = Config(str(alembic_ini_path))
        alembic_cfg.set_main_option("script_location", str(BASE_DIR / "alembic"))

        logger.info("Running Alembic migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        # Fallback to create_all for fresh databases only
        logger.info("Falling back to create_all...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created via create_all")


# Initialize database and scheduler on startup
@app.on_event("startup")
async def startup_event():
    run_migrations()
    start_scheduler()
    logger.info("Background scheduler started")


@app.on_event("shutdown")
async def shutdown_event():
    shutdown_scheduler()
    logger.info("Background scheduler stopped")


# CORS configuration - use environment-specific origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(square.router)


@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}
