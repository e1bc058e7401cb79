import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wayfinder.config import settings

# ─── Logging setup (file + console) ───
_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_LOG_DIR.mkdir(exist_ok=True)

_log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            _LOG_DIR / "wayfinder.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from wayfinder.database import async_session_factory, create_tables, engine  # noqa: E402
from wayfinder.errors import AllProvidersFailed, MalformedStructuredOutput, NotFound, PhaseViolation  # noqa: E402
from wayfinder.routers import templates, trips  # noqa: E402
from wayfinder.services.container import build_services  # noqa: E402
from wayfinder.services.maintenance import purge_old_telemetry  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables(engine)

    if settings.seed_on_startup:
        try:
            from wayfinder.seed import seed
            await seed()
        except Exception as e:
            logger.warning(f"Auto-seed skipped: {e}")

    services = build_services(settings, async_session_factory)
    app.state.services = services

    # Background scheduler
    scheduler = None
    if settings.scheduler_enabled:
        try:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            from apscheduler.triggers.cron import CronTrigger

            scheduler = AsyncIOScheduler()

            async def _purge_telemetry():
                await purge_old_telemetry(services.store, settings.telemetry_retention_days)

            scheduler.add_job(_purge_telemetry, CronTrigger(hour=3, minute=0), id="purge_telemetry")
            scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Scheduler failed to start: {e}")
            scheduler = None

    yield

    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
    await services.aclose()
    await engine.dispose()


app = FastAPI(
    title="Wayfinder",
    description="Conversational multi-destination trip planning",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PhaseViolation)
async def phase_violation_handler(request: Request, exc: PhaseViolation):
    content = {"error": exc.message, "code": exc.code}
    if exc.requires_confirmation:
        content["requiresConfirmation"] = True
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(AllProvidersFailed)
async def providers_failed_handler(request: Request, exc: AllProvidersFailed):
    return JSONResponse(
        status_code=502,
        content={"error": "Upstream providers are unavailable. Please try again.", "code": "ALL_PROVIDERS_FAILED", "details": str(exc)},
    )


@app.exception_handler(MalformedStructuredOutput)
async def malformed_output_handler(request: Request, exc: MalformedStructuredOutput):
    return JSONResponse(
        status_code=502,
        content={"error": "The AI response could not be understood. Please try again.", "code": "MALFORMED_OUTPUT", "details": exc.reason},
    )


app.include_router(trips.router, prefix="/api/trips", tags=["trips"])
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "wayfinder"}
