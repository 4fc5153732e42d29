"""
app/main.py
FastAPI application factory and startup configuration.
"""
import logging
from contextlib import asynccontextmanager

import motor.motor_asyncio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ASCENDING, DESCENDING

from app.core.config import settings
from app.core.exceptions import CertiFlowError
from app.repositories.job_repository import JobRepository
from app.repositories.settings_repository import SettingsRepository
from app.repositories.template_repository import TemplateRepository
from app.services.job_service import JobService

logger = logging.getLogger(__name__)

# ── MongoDB client (module-level, shared across requests) ──────────────────────
client: motor.motor_asyncio.AsyncIOMotorClient | None = None
db: motor.motor_asyncio.AsyncIOMotorDatabase | None = None


async def ensure_indexes(database: motor.motor_asyncio.AsyncIOMotorDatabase) -> None:
    for collection in ("batch_jobs", "recipients", "certificate_templates",
                       "email_templates", "smtp_configs", "app_settings"):
        await database[collection].create_index("id", unique=True)

    await database.batch_jobs.create_index([("created_at", DESCENDING)])
    await database.batch_jobs.create_index("status")
    await database.recipients.create_index([("batch_job_id", ASCENDING), ("sequence", ASCENDING)])
    await database.recipients.create_index("email_status")
    await database.recipients.create_index("sent_at")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and tear down resources on startup/shutdown."""
    global client, db
    logger.info("Connecting to MongoDB...")
    client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI)
    db = client[settings.MONGO_DB_NAME]

    await ensure_indexes(db)
    logger.info(f"Connected to MongoDB: {settings.MONGO_DB_NAME}")

    service = JobService(JobRepository(db), TemplateRepository(db), SettingsRepository(db))
    resumed = await service.resume_interrupted_jobs()
    if resumed:
        logger.info(f"Resumed {resumed} interrupted job(s).")

    yield  # App is running

    logger.info("Shutting down: closing MongoDB connection.")
    client.close()


# ── App factory ────────────────────────────────────────────────────────────────
app = FastAPI(
    title="CertiFlow",
    description="Generate personalized certificates from a CSV and email them in batches.",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS middleware ────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error handlers ─────────────────────────────────────────────────────────────
@app.exception_handler(CertiFlowError)
async def certiflow_exception_handler(request: Request, exc: CertiFlowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    content: dict = {"detail": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


# ── Include routers ────────────────────────────────────────────────────────────
from app.api.certificate import router as certificate_router
from app.api.csv import router as csv_router
from app.api.email import router as email_router
from app.api.jobs import router as jobs_router
from app.api.settings import router as settings_router
from app.api.templates import router as templates_router

app.include_router(templates_router)
app.include_router(csv_router)
app.include_router(certificate_router)
app.include_router(email_router)
app.include_router(jobs_router)
app.include_router(settings_router)


# ── Health check ───────────────────────────────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": "CertiFlow"}
