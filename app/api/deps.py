"""
api/deps.py
FastAPI dependencies shared by the routers.
"""
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.repositories.job_repository import JobRepository
from app.repositories.settings_repository import SettingsRepository
from app.repositories.template_repository import TemplateRepository
from app.services.job_service import JobService
from app.services.progress_service import ProgressPublisher, progress_publisher


def get_db() -> AsyncIOMotorDatabase:
    """Lazy import to avoid circular dependency."""
    from app.main import db
    return db


def get_job_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> JobRepository:
    return JobRepository(db)


def get_template_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> TemplateRepository:
    return TemplateRepository(db)


def get_settings_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> SettingsRepository:
    return SettingsRepository(db)


def get_publisher() -> ProgressPublisher:
    return progress_publisher


def get_job_service(
    jobs: JobRepository = Depends(get_job_repository),
    templates: TemplateRepository = Depends(get_template_repository),
    settings_repo: SettingsRepository = Depends(get_settings_repository),
    publisher: ProgressPublisher = Depends(get_publisher),
) -> JobService:
    return JobService(jobs, templates, settings_repo, publisher)
