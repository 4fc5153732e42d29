"""
models/job_model.py
MongoDB document schema and Pydantic models for batch jobs and recipients.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.utils.helpers import generate_id, utcnow


class JobType(str, Enum):
    CERTIFICATE = "certificate"
    EMAIL = "email"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class CertificateJobConfig(BaseModel):
    """Parameters of a certificate generation job."""
    template_id: str
    naming_pattern: str
    output_path: str


class EmailJobConfig(BaseModel):
    """Parameters of an email sending job."""
    email_template_id: str
    smtp_config_id: str
    subject: str = ""
    delay_ms: int = 0
    source_job_id: Optional[str] = None


class BatchJob(BaseModel):
    """Full MongoDB document model for a batch job."""
    id: str = Field(default_factory=generate_id)
    type: JobType
    status: JobStatus = JobStatus.PENDING
    config: dict = Field(default_factory=dict)
    total_count: int = 0
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    # Identifies the run currently allowed to process recipients
    run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True
        validate_default = True

    @property
    def percentage(self) -> int:
        return progress_percentage(self.processed_count, self.total_count)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Recipient(BaseModel):
    """One imported row bound to a batch job."""
    id: str = Field(default_factory=generate_id)
    batch_job_id: str
    sequence: int
    email: str = ""
    full_name: str = "Unknown"
    extra_fields: dict[str, str] = Field(default_factory=dict)
    certificate_path: Optional[str] = None
    email_status: EmailStatus = EmailStatus.PENDING
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        use_enum_values = True
        validate_default = True

    def template_data(self) -> dict[str, str]:
        """Placeholder values: name/email first, then the original row over them."""
        return {
            "name": self.full_name,
            "full_name": self.full_name,
            "email": self.email,
            **self.extra_fields,
        }


class ProgressEvent(BaseModel):
    job_id: str
    processed: int
    total: int
    percentage: int
    status: str


def progress_percentage(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(processed / total * 100)


class EmailBatchRequest(BaseModel):
    """Request model for starting an email batch from a certificate job."""
    certificate_job_id: str
    email_template_id: str
    smtp_config_id: str
    subject: Optional[str] = None
    delay_ms: Optional[int] = Field(default=None, ge=0)
