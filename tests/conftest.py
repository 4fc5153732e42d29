import io
from datetime import datetime
from typing import Optional

import pytest
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from app.models.job_model import BatchJob, EmailStatus, Recipient
from app.models.settings_model import AppSettings, SmtpConfig
from app.models.template_model import CertificateTemplate, EmailTemplate, FieldConfig
from app.services.progress_service import ProgressPublisher


@pytest.fixture()
def template_pdf_bytes() -> bytes:
    """A blank A4 landscape certificate background."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=landscape(A4))
    c.drawString(72, 500, "Certificate of Completion")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def two_page_pdf_bytes() -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=landscape(A4))
    c.drawString(72, 500, "Front")
    c.showPage()
    c.drawString(72, 500, "Back page")
    c.save()
    return buf.getvalue()


class FakeJobRepository:
    """In-memory stand-in for JobRepository."""

    def __init__(self) -> None:
        self.jobs: dict[str, BatchJob] = {}
        self.recipients: dict[str, Recipient] = {}

    async def create_job(self, job: BatchJob) -> BatchJob:
        self.jobs[job.id] = job
        return job

    async def insert_recipients(self, recipients: list[Recipient]) -> int:
        for r in recipients:
            self.recipients[r.id] = r
        return len(recipients)

    async def get_job(self, job_id: str) -> Optional[BatchJob]:
        return self.jobs.get(job_id)

    async def list_jobs(self, job_type=None, status=None, limit: int = 50) -> list[BatchJob]:
        jobs = [
            j for j in self.jobs.values()
            if (not job_type or j.type == job_type) and (not status or j.status == status)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit] if limit else jobs

    async def update_job(self, job_id: str, expected_status=None, **fields) -> Optional[BatchJob]:
        job = self.jobs.get(job_id)
        if job is None or (expected_status and job.status != expected_status):
            return None
        self.jobs[job_id] = job.model_copy(update=fields)
        return self.jobs[job_id]

    async def record_outcome(self, job_id: str, succeeded: bool) -> Optional[BatchJob]:
        job = self.jobs.get(job_id)
        if job is None:
            return None
        outcome = "success_count" if succeeded else "failed_count"
        self.jobs[job_id] = job.model_copy(
            update={"processed_count": job.processed_count + 1, outcome: getattr(job, outcome) + 1}
        )
        return self.jobs[job_id]

    async def delete_job(self, job_id: str) -> bool:
        if self.jobs.pop(job_id, None) is None:
            return False
        self.recipients = {k: r for k, r in self.recipients.items() if r.batch_job_id != job_id}
        return True

    async def list_recipients(self, job_id: str) -> list[Recipient]:
        found = [r for r in self.recipients.values() if r.batch_job_id == job_id]
        return sorted(found, key=lambda r: r.sequence)

    async def find_recipients(self, job_id: str, email_status=None, skip: int = 0, limit: int = 50):
        found = [
            r for r in await self.list_recipients(job_id)
            if not email_status or r.email_status == email_status
        ]
        return found[skip:skip + limit], len(found)

    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        return self.recipients.get(recipient_id)

    async def update_recipient(self, recipient_id: str, **fields) -> None:
        self.recipients[recipient_id] = self.recipients[recipient_id].model_copy(update=fields)

    async def reset_failed_recipients(self, job_id: str) -> int:
        reset = 0
        for r in await self.list_recipients(job_id):
            if r.email_status == EmailStatus.FAILED.value or r.error_message is not None:
                await self.update_recipient(
                    r.id, email_status=EmailStatus.PENDING.value, error_message=None
                )
                reset += 1
        return reset

    async def count_sent_since(self, since: datetime) -> int:
        return sum(
            1 for r in self.recipients.values()
            if r.email_status == EmailStatus.SENT.value and r.sent_at and r.sent_at >= since
        )


class FakeTemplateRepository:
    def __init__(self) -> None:
        self.certificates: dict[str, CertificateTemplate] = {}
        self.emails: dict[str, EmailTemplate] = {}

    async def create_certificate_template(self, template: CertificateTemplate) -> CertificateTemplate:
        self.certificates[template.id] = template
        return template

    async def get_certificate_template(self, template_id: str) -> Optional[CertificateTemplate]:
        return self.certificates.get(template_id)

    async def list_certificate_templates(self) -> list[CertificateTemplate]:
        return list(self.certificates.values())

    async def delete_certificate_template(self, template_id: str) -> bool:
        return self.certificates.pop(template_id, None) is not None

    async def create_email_template(self, template: EmailTemplate) -> EmailTemplate:
        self.emails[template.id] = template
        return template

    async def get_email_template(self, template_id: str) -> Optional[EmailTemplate]:
        return self.emails.get(template_id)

    async def list_email_templates(self) -> list[EmailTemplate]:
        return list(self.emails.values())


class FakeSettingsRepository:
    def __init__(self) -> None:
        self.app_settings = AppSettings(email_delay_ms=0, max_emails_per_day=500)
        self.smtp: dict[str, SmtpConfig] = {}

    async def get_app_settings(self) -> AppSettings:
        return self.app_settings

    async def update_app_settings(self, **fields) -> AppSettings:
        self.app_settings = self.app_settings.model_copy(update=fields)
        return self.app_settings

    async def list_smtp_configs(self) -> list[SmtpConfig]:
        return list(self.smtp.values())

    async def get_smtp_config(self, config_id: str) -> Optional[SmtpConfig]:
        return self.smtp.get(config_id)

    async def get_default_smtp_config(self) -> Optional[SmtpConfig]:
        return next((c for c in self.smtp.values() if c.is_default), None)

    async def create_smtp_config(self, config: SmtpConfig) -> SmtpConfig:
        self.smtp[config.id] = config
        return config

    async def delete_smtp_config(self, config_id: str) -> bool:
        return self.smtp.pop(config_id, None) is not None


@pytest.fixture()
def job_repo() -> FakeJobRepository:
    return FakeJobRepository()


@pytest.fixture()
def template_repo(template_pdf_bytes: bytes) -> FakeTemplateRepository:
    """Holds one certificate template (id "tpl-1") drawing the name field."""
    repo = FakeTemplateRepository()
    repo.certificates["tpl-1"] = CertificateTemplate(
        id="tpl-1",
        name="Workshop",
        template_data=template_pdf_bytes,
        field_configs=[FieldConfig(field="name", x=421, y=250, font_size=32, alignment="center")],
        width=842,
        height=595,
    )
    repo.emails["mail-1"] = EmailTemplate(
        id="mail-1",
        name="Certificate ready",
        subject="Your certificate, {{name}}",
        html_content="<p>Hello {{name}}, welcome to {{event}}</p>",
    )
    return repo


@pytest.fixture()
def settings_repo() -> FakeSettingsRepository:
    """Holds one default SMTP config (id "smtp-1")."""
    repo = FakeSettingsRepository()
    repo.smtp["smtp-1"] = SmtpConfig(
        id="smtp-1",
        name="Relay",
        host="smtp.example.com",
        port=587,
        username="certs@example.com",
        password="secret",
        is_default=True,
    )
    return repo


@pytest.fixture()
def publisher() -> ProgressPublisher:
    return ProgressPublisher()
