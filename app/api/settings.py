"""
api/settings.py
FastAPI router for application settings and SMTP configurations.
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_settings_repository
from app.core.exceptions import NotFoundError, ValidationError
from app.models.settings_model import (
    AppSettingsUpdate,
    SmtpConfig,
    SmtpConfigCreate,
    SmtpConfigUpdate,
    SmtpTestRequest,
)
from app.repositories.settings_repository import SettingsRepository
from app.services.email_service import verify_smtp
from app.utils.helpers import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("")
async def get_settings(settings_repo: SettingsRepository = Depends(get_settings_repository)):
    return await settings_repo.get_app_settings()


@router.put("")
async def update_settings(
    update: AppSettingsUpdate,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    return await settings_repo.update_app_settings(**update.model_dump(exclude_none=True))


# ── SMTP configs ───────────────────────────────────────────────────────────────

@router.get("/smtp")
async def list_smtp_configs(settings_repo: SettingsRepository = Depends(get_settings_repository)):
    return [c.public_dict() for c in await settings_repo.list_smtp_configs()]


@router.post("/smtp", status_code=201)
async def create_smtp_config(
    body: SmtpConfigCreate,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    config = await settings_repo.create_smtp_config(SmtpConfig(**body.model_dump()))
    logger.info(f"SMTP config created: {config.name} ({config.host}:{config.port})")
    return config.public_dict()


@router.put("/smtp/{config_id}")
async def update_smtp_config(
    config_id: str,
    update: SmtpConfigUpdate,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    config = await settings_repo.update_smtp_config(config_id, **update.model_dump(exclude_none=True))
    if config is None:
        raise NotFoundError("SMTP config not found")
    return config.public_dict()


@router.delete("/smtp/{config_id}")
async def delete_smtp_config(
    config_id: str,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    if not await settings_repo.delete_smtp_config(config_id):
        raise NotFoundError("SMTP config not found")
    return {"success": True}


@router.post("/smtp/test")
async def test_smtp_config(
    body: SmtpTestRequest,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    """Check that a stored config, or an unsaved set of parameters, can log in."""
    if body.id:
        config = await settings_repo.get_smtp_config(body.id)
        if config is None:
            raise NotFoundError("SMTP config not found")
    elif body.host and body.port and body.username and body.password:
        config = SmtpConfig(
            host=body.host,
            port=body.port,
            username=body.username,
            password=body.password,
        )
    else:
        raise ValidationError("Either id or host, port, username and password are required")

    return await verify_smtp(config)
