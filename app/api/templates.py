"""
api/templates.py
FastAPI router for certificate and email templates.
"""
import base64
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import get_template_repository
from app.core.config import settings
from app.core.exceptions import CertificateRenderError, NotFoundError
from app.models.template_model import (
    CertificateTemplate,
    CertificateTemplateUpdate,
    EmailTemplate,
    EmailTemplateCreate,
    EmailTemplateUpdate,
    FieldConfig,
)
from app.repositories.template_repository import TemplateRepository
from app.services.pdf_generator import image_to_pdf, probe_template_info
from app.utils.helpers import extract_placeholders, get_logger, utcnow

logger = get_logger(__name__)
router = APIRouter(prefix="/api/templates", tags=["Templates"])

FIELD_CONFIGS_ADAPTER = TypeAdapter(list[FieldConfig])
IMAGE_TYPES = {"image/png", "image/jpeg"}


def _parse_field_configs(raw: str) -> list[FieldConfig]:
    try:
        return FIELD_CONFIGS_ADAPTER.validate_json(raw or "[]")
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid field configuration: {e.errors()[0]['msg']}")


# ── Certificate templates ──────────────────────────────────────────────────────

@router.post("/certificate", status_code=201)
async def upload_certificate_template(
    template: UploadFile = File(...),
    name: Optional[str] = Form(None),
    field_configs: str = Form("[]"),
    templates: TemplateRepository = Depends(get_template_repository),
):
    """Upload a certificate background: a PDF, or a PNG/JPEG converted to PDF."""
    content_type = (template.content_type or "").lower()
    filename = template.filename or "template.pdf"
    is_pdf = "pdf" in content_type or filename.lower().endswith(".pdf")
    is_image = content_type in IMAGE_TYPES or filename.lower().endswith((".png", ".jpg", ".jpeg"))
    if not (is_pdf or is_image):
        raise HTTPException(status_code=400, detail="Template must be a PDF, PNG or JPEG file.")

    content = await template.read()
    if not content:
        raise HTTPException(status_code=400, detail="Template file is empty.")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Template file is too large.")

    configs = _parse_field_configs(field_configs)
    try:
        pdf_bytes = content if is_pdf else image_to_pdf(content)
    except CertificateRenderError as e:
        raise HTTPException(status_code=400, detail=str(e))
    info = probe_template_info(pdf_bytes)

    record = CertificateTemplate(
        name=name or filename.rsplit(".", 1)[0],
        template_data=pdf_bytes,
        field_configs=configs,
        page_count=info.page_count,
        width=info.width,
        height=info.height,
    )
    await templates.create_certificate_template(record)
    logger.info(f"Template uploaded: {record.name} ({record.id}, {len(pdf_bytes)} bytes)")
    return record.summary()


@router.get("/certificate")
async def list_certificate_templates(templates: TemplateRepository = Depends(get_template_repository)):
    return [t.summary() for t in await templates.list_certificate_templates()]


async def _get_certificate_template(template_id: str, templates: TemplateRepository) -> CertificateTemplate:
    template = await templates.get_certificate_template(template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


@router.get("/certificate/{template_id}")
async def get_certificate_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
):
    return (await _get_certificate_template(template_id, templates)).summary()


@router.get("/certificate/{template_id}/data")
async def get_certificate_template_data(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
):
    """Template PDF as base64 JSON, for the editor's preview canvas."""
    template = await _get_certificate_template(template_id, templates)
    if not template.template_data:
        raise HTTPException(status_code=500, detail="Template PDF data is empty")
    return {
        "data": base64.b64encode(template.template_data).decode("ascii"),
        "name": template.name,
        "size": len(template.template_data),
    }


@router.put("/certificate/{template_id}")
async def update_certificate_template(
    template_id: str,
    update: CertificateTemplateUpdate,
    templates: TemplateRepository = Depends(get_template_repository),
):
    fields = update.model_dump(exclude_none=True)
    fields["updated_at"] = utcnow()
    template = await templates.update_certificate_template(template_id, **fields)
    if template is None:
        raise NotFoundError("Template not found")
    return template.summary()


@router.delete("/certificate/{template_id}")
async def delete_certificate_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
):
    if not await templates.delete_certificate_template(template_id):
        raise NotFoundError("Template not found")
    return {"success": True}


# ── Email templates ────────────────────────────────────────────────────────────

@router.post("/email", status_code=201)
async def create_email_template(
    body: EmailTemplateCreate,
    templates: TemplateRepository = Depends(get_template_repository),
):
    template = EmailTemplate(
        name=body.name,
        subject=body.subject,
        html_content=body.html_content,
        placeholders=extract_placeholders(f"{body.subject}\n{body.html_content}"),
    )
    return await templates.create_email_template(template)


@router.get("/email")
async def list_email_templates(templates: TemplateRepository = Depends(get_template_repository)):
    return await templates.list_email_templates()


@router.get("/email/{template_id}")
async def get_email_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
):
    template = await templates.get_email_template(template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


@router.put("/email/{template_id}")
async def update_email_template(
    template_id: str,
    update: EmailTemplateUpdate,
    templates: TemplateRepository = Depends(get_template_repository),
):
    current = await templates.get_email_template(template_id)
    if current is None:
        raise NotFoundError("Template not found")

    fields = update.model_dump(exclude_none=True)
    subject = fields.get("subject", current.subject)
    html_content = fields.get("html_content", current.html_content)
    fields["placeholders"] = extract_placeholders(f"{subject}\n{html_content}")
    fields["updated_at"] = utcnow()
    return await templates.update_email_template(template_id, **fields)


@router.delete("/email/{template_id}")
async def delete_email_template(
    template_id: str,
    templates: TemplateRepository = Depends(get_template_repository),
):
    if not await templates.delete_email_template(template_id):
        raise NotFoundError("Template not found")
    return {"success": True}
