"""
api/certificate.py
FastAPI router for certificate preview, generation and download.
"""
import io
import zipfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse, Response, StreamingResponse

from app.api.csv import read_csv_upload
from app.api.deps import get_job_repository, get_job_service, get_template_repository
from app.core.exceptions import NotFoundError
from app.models.template_model import CertificatePreviewRequest
from app.repositories.job_repository import JobRepository
from app.repositories.template_repository import TemplateRepository
from app.services.csv_service import sanitize_filename
from app.services.job_service import JobService
from app.services.pdf_generator import generate_preview
from app.utils.helpers import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


# ── Preview ────────────────────────────────────────────────────────────────────

@router.post("/preview")
async def preview_certificate(
    body: CertificatePreviewRequest,
    templates: TemplateRepository = Depends(get_template_repository),
):
    """Render the template with sample data; unsaved field configs may be passed in."""
    template = await templates.get_certificate_template(body.template_id)
    if template is None:
        raise NotFoundError("Template not found")

    configs = body.field_configs if body.field_configs is not None else template.field_configs
    pdf_bytes = generate_preview(template.template_data, configs, body.sample_data)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": 'inline; filename="preview.pdf"'},
    )


# ── Start batch generation ─────────────────────────────────────────────────────

@router.post("/generate", status_code=201)
async def generate_certificates(
    csv: UploadFile = File(...),
    template_id: Optional[str] = Form(None),
    naming_pattern: Optional[str] = Form(None),
    output_path: Optional[str] = Form(None),
    service: JobService = Depends(get_job_service),
):
    """
    Upload CSV and start batch certificate generation.
    Returns a job_id for progress tracking.
    """
    csv_bytes = await read_csv_upload(csv)
    job, validation = await service.create_certificate_job(
        csv_bytes,
        template_id=template_id,
        output_path=output_path,
        naming_pattern=naming_pattern,
    )
    service.start(job.id)

    return {
        "job_id": job.id,
        "total_recipients": job.total_count,
        "warnings": validation.warnings,
        "message": "Certificate generation started",
    }


# ── Downloads ──────────────────────────────────────────────────────────────────

@router.get("/download/{recipient_id}")
async def download_certificate(
    recipient_id: str,
    jobs: JobRepository = Depends(get_job_repository),
):
    recipient = await jobs.get_recipient(recipient_id)
    if recipient is None or not recipient.certificate_path or not Path(recipient.certificate_path).exists():
        raise NotFoundError("Certificate not found")

    return FileResponse(
        recipient.certificate_path,
        media_type="application/pdf",
        filename=f"Certificate_{sanitize_filename(recipient.full_name)}.pdf",
    )


@router.get("/download-all/{job_id}")
async def download_zip(
    job_id: str,
    jobs: JobRepository = Depends(get_job_repository),
):
    """Return every generated certificate of a job as a ZIP file."""
    job = await jobs.get_job(job_id)
    if job is None:
        raise NotFoundError("Job not found")

    recipients = await jobs.list_recipients(job_id)
    zip_buffer = io.BytesIO()
    with zipfile.ZipFile(zip_buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for recipient in recipients:
            if not recipient.certificate_path:
                continue
            path = Path(recipient.certificate_path)
            if not path.exists():
                logger.warning(f"Skipped {recipient.full_name} in ZIP: {path} is missing")
                continue
            zf.write(path, arcname=path.name)

    zip_buffer.seek(0)
    return StreamingResponse(
        zip_buffer,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename=certificates_{job_id[:8]}.zip"},
    )
