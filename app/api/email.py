"""
api/email.py
FastAPI router for email preview, test sends and batch sending.
"""
import math

from fastapi import APIRouter, Depends

from app.api.deps import get_job_service, get_settings_repository, get_template_repository
from app.core.exceptions import NotFoundError, ValidationError
from app.models.job_model import EmailBatchRequest
from app.models.settings_model import TestSendRequest
from app.models.template_model import EmailPreviewRequest
from app.repositories.settings_repository import SettingsRepository
from app.repositories.template_repository import TemplateRepository
from app.services.email_service import send_email
from app.services.job_service import JobService
from app.services.pdf_generator import default_preview_data
from app.utils.helpers import get_logger, replace_template_vars

logger = get_logger(__name__)
router = APIRouter(prefix="/api/email", tags=["Email"])


@router.post("/preview")
async def preview_email(
    body: EmailPreviewRequest,
    templates: TemplateRepository = Depends(get_template_repository),
):
    """Render an email body with sample data. Inline HTML wins over a stored template."""
    html = body.html_content
    if html is None and body.template_id:
        template = await templates.get_email_template(body.template_id)
        if template is None:
            raise NotFoundError("Template not found")
        html = template.html_content
    if html is None:
        raise ValidationError("Either template_id or html_content is required")

    data = {**default_preview_data(), **(body.sample_data or {})}
    return {"html": replace_template_vars(html, data)}


@router.post("/test-send")
async def test_send(
    body: TestSendRequest,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
):
    """Send a single email through a stored SMTP config, or the default one."""
    if body.smtp_config_id:
        smtp = await settings_repo.get_smtp_config(body.smtp_config_id)
        if smtp is None:
            raise NotFoundError("SMTP config not found")
    else:
        smtp = await settings_repo.get_default_smtp_config()
        if smtp is None:
            raise ValidationError("No SMTP configuration found")

    data = default_preview_data()
    await send_email(
        body.to,
        replace_template_vars(body.subject, data),
        replace_template_vars(body.html_content, data),
        smtp,
    )
    logger.info(f"Test email sent to {body.to} via {smtp.host}")
    return {"success": True, "message": f"Test email sent to {body.to}"}


@router.post("/send-batch", status_code=201)
async def send_batch(
    body: EmailBatchRequest,
    service: JobService = Depends(get_job_service),
):
    """Start sending emails to every recipient of a certificate job."""
    job = await service.create_email_job(body)
    service.start(job.id)

    delay_ms = job.config.get("delay_ms", 0)
    return {
        "job_id": job.id,
        "total_recipients": job.total_count,
        "estimated_time_minutes": math.ceil(job.total_count * delay_ms / 60000),
        "message": "Email sending started",
    }


@router.get("/stats")
async def email_stats(service: JobService = Depends(get_job_service)):
    return await service.get_email_stats()
