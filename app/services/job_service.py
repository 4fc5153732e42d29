"""
services/job_service.py
Batch job engine: creates certificate and email jobs, runs them recipient by
recipient, and handles retry and cancellation.
"""
import asyncio
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.exceptions import (
    EmailDispatchError,
    InvalidJobStateError,
    NotFoundError,
    ValidationError,
)
from app.models.csv_model import CsvValidationResult
from app.models.job_model import (
    BatchJob,
    CertificateJobConfig,
    EmailBatchRequest,
    EmailJobConfig,
    EmailStatus,
    JobStatus,
    JobType,
    Recipient,
)
from app.models.template_model import FieldConfig
from app.repositories.job_repository import JobRepository
from app.repositories.settings_repository import SettingsRepository
from app.repositories.template_repository import TemplateRepository
from app.services.csv_service import (
    extract_email,
    extract_name,
    parse_csv,
    sanitize_filename,
    validate_csv,
)
from app.services.email_service import Attachment, send_email
from app.services.pdf_generator import generate_certificate_pdf
from app.services.progress_service import ProgressPublisher, progress_publisher
from app.utils.helpers import (
    PLACEHOLDER_RE,
    generate_id,
    get_logger,
    replace_template_vars,
    start_of_day,
    utcnow,
)

logger = get_logger(__name__)

SERIAL_RE = re.compile(r"\{\{\s*sn\s*\}\}", re.IGNORECASE)

Renderer = Callable[[bytes, list[FieldConfig], dict[str, str]], bytes]
Sender = Callable[..., Awaitable[None]]

# Running job tasks, kept referenced until they finish
_background_tasks: set[asyncio.Task] = set()


def generate_filename(pattern: str, data: dict[str, str], index: int) -> str:
    """
    Build a certificate filename from a naming pattern.

    {{sn}} becomes the 1-based position padded to three digits; any other
    {{field}} becomes the sanitized value, or nothing if the field is absent.
    """
    filename = SERIAL_RE.sub(f"{index + 1:03d}", pattern)

    lookup: dict[str, str] = {}
    for key, value in data.items():
        lookup.setdefault(key.lower(), value or "")
    filename = PLACEHOLDER_RE.sub(lambda m: sanitize_filename(lookup.get(m.group(1).lower(), "")), filename)

    # Never let a pattern escape the output directory
    filename = Path(filename).name
    stem = filename[:-4] if filename.lower().endswith(".pdf") else filename
    if not stem:
        stem = f"{index + 1:03d}"
    return f"{stem}.pdf"


class SendThrottle:
    """
    Paces outbound email: a fixed delay between sends and a daily cap.

    The first send of a run goes out immediately; every later send waits
    delay_ms first, so no delay follows the last message.
    """

    def __init__(
        self,
        delay_ms: int,
        daily_limit: int,
        sent_today: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.delay_ms = max(0, delay_ms)
        self.daily_limit = daily_limit
        self.remaining = max(0, daily_limit - sent_today)
        self._sleep = sleep
        self._attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    async def wait_turn(self) -> None:
        if self._attempts and self.delay_ms:
            await self._sleep(self.delay_ms / 1000)
        self._attempts += 1

    def record_sent(self) -> None:
        self.remaining -= 1


class JobService:
    """Creates batch jobs and drives them through their recipients."""

    def __init__(
        self,
        job_repo: JobRepository,
        template_repo: TemplateRepository,
        settings_repo: SettingsRepository,
        publisher: ProgressPublisher = progress_publisher,
        render: Renderer = generate_certificate_pdf,
        send: Sender = send_email,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._jobs = job_repo
        self._templates = template_repo
        self._settings = settings_repo
        self._publisher = publisher
        self._render = render
        self._send = send
        self._sleep = sleep

    # ── Job creation ───────────────────────────────────────────────────────────

    async def create_certificate_job(
        self,
        csv_bytes: bytes,
        template_id: Optional[str],
        output_path: Optional[str],
        naming_pattern: Optional[str] = None,
    ) -> tuple[BatchJob, CsvValidationResult]:
        """Validate the upload and create a pending job with one recipient per row."""
        if not template_id:
            raise ValidationError("Template ID is required")
        if not output_path:
            raise ValidationError("Output path is required")

        template = await self._templates.get_certificate_template(template_id)
        if template is None:
            raise NotFoundError("Template not found")

        parsed = parse_csv(csv_bytes)
        validation = validate_csv(parsed)
        if not validation.is_valid:
            raise ValidationError("CSV validation failed", details=validation.errors)

        config = CertificateJobConfig(
            template_id=template_id,
            naming_pattern=naming_pattern or settings.DEFAULT_NAMING_PATTERN,
            output_path=output_path,
        )
        job = BatchJob(
            type=JobType.CERTIFICATE,
            config=config.model_dump(),
            total_count=parsed.total_rows,
        )
        await self._jobs.create_job(job)

        recipients = [
            Recipient(
                batch_job_id=job.id,
                sequence=index,
                email=extract_email(row),
                full_name=extract_name(row),
                extra_fields=row,
            )
            for index, row in enumerate(parsed.rows)
        ]
        await self._jobs.insert_recipients(recipients)
        logger.info(f"Job {job.id}: certificate job created with {len(recipients)} recipients.")
        return job, validation

    async def create_email_job(self, request: EmailBatchRequest) -> BatchJob:
        """Create an email job over the recipients of a certificate job."""
        source = await self._jobs.get_job(request.certificate_job_id)
        if source is None:
            raise NotFoundError("Certificate job not found")

        email_template = await self._templates.get_email_template(request.email_template_id)
        if email_template is None:
            raise NotFoundError("Email template not found")

        if await self._settings.get_smtp_config(request.smtp_config_id) is None:
            raise NotFoundError("SMTP config not found")

        app_settings = await self._settings.get_app_settings()
        delay_ms = request.delay_ms if request.delay_ms is not None else app_settings.email_delay_ms

        config = EmailJobConfig(
            email_template_id=request.email_template_id,
            smtp_config_id=request.smtp_config_id,
            subject=request.subject or email_template.subject,
            delay_ms=delay_ms,
            source_job_id=source.id,
        )
        source_recipients = await self._jobs.list_recipients(source.id)
        job = BatchJob(
            type=JobType.EMAIL,
            config=config.model_dump(),
            total_count=len(source_recipients),
        )
        await self._jobs.create_job(job)
        await self._jobs.insert_recipients(
            [
                Recipient(
                    batch_job_id=job.id,
                    sequence=r.sequence,
                    email=r.email,
                    full_name=r.full_name,
                    extra_fields=r.extra_fields,
                    certificate_path=r.certificate_path,
                )
                for r in source_recipients
            ]
        )
        logger.info(f"Job {job.id}: email job created from {source.id} with {len(source_recipients)} recipients.")
        return job

    # ── Running ────────────────────────────────────────────────────────────────

    def start(self, job_id: str) -> asyncio.Task:
        """Run a job as a background task."""
        task = asyncio.create_task(self.run_job(job_id))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def run_job(self, job_id: str) -> None:
        """Run a pending job to the end. Never raises; failures end up on the job."""
        try:
            job = await self._jobs.get_job(job_id)
            if job is None:
                logger.error(f"[{job_id}] Job not found, nothing to run.")
                return
            if job.status != JobStatus.PENDING:
                logger.warning(f"[{job_id}] Job is {job.status}, not starting.")
                return

            if job.type == JobType.CERTIFICATE:
                await self.process_certificate_batch(job_id)
            else:
                await self.process_email_batch(job_id)
        except Exception as e:
            logger.error(f"[{job_id}] Batch processing error: {e}", exc_info=True)
            try:
                await self._fail_job(job_id, f"Unexpected error: {e}")
            except Exception as mark_error:
                logger.error(f"[{job_id}] Could not mark job as failed: {mark_error}")

    async def resume_interrupted_jobs(self) -> int:
        """Restart jobs left in processing by a previous process."""
        jobs = await self._jobs.list_jobs(status=JobStatus.PROCESSING.value, limit=0)
        for job in jobs:
            logger.info(f"[{job.id}] Resuming interrupted {job.type} job.")
            await self._jobs.update_job(job.id, status=JobStatus.PENDING.value)
            self.start(job.id)
        return len(jobs)

    async def process_certificate_batch(self, job_id: str) -> None:
        """Render a certificate for every unsettled recipient of the job."""
        job = await self._load_job(job_id)
        config = CertificateJobConfig(**job.config)

        template = await self._templates.get_certificate_template(config.template_id)
        if template is None:
            await self._fail_job(job_id, f"Template {config.template_id} not found")
            return

        output_dir = Path(config.output_path)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            await self._fail_job(job_id, f"Cannot create output directory {output_dir}: {e}")
            return

        recipients = await self._jobs.list_recipients(job_id)
        run_id = await self._claim_run(job_id)
        logger.info(f"[{job_id}] Generating certificates for {len(recipients)} recipients into {output_dir}")

        for recipient in recipients:
            if await self._should_stop(job_id, run_id):
                await self._stop_run(job_id)
                return
            # Already written, or failed and not reset for retry
            if recipient.certificate_path or recipient.error_message:
                continue

            data = recipient.template_data()
            try:
                pdf_bytes = self._render(template.template_data, template.field_configs, data)
                file_path = output_dir / generate_filename(config.naming_pattern, data, recipient.sequence)
                file_path.write_bytes(pdf_bytes)
                await self._jobs.update_recipient(
                    recipient.id, certificate_path=str(file_path), error_message=None
                )
                succeeded = True
            except Exception as e:
                logger.error(f"[{job_id}] Certificate failed for {recipient.full_name}: {e}")
                await self._jobs.update_recipient(recipient.id, error_message=_error_text(e))
                succeeded = False

            await self._record_progress(job_id, succeeded)

        await self._finish(job_id, run_id, output_path=str(output_dir))

    async def process_email_batch(self, job_id: str) -> None:
        """Send the job's email to every recipient not yet sent, one at a time."""
        job = await self._load_job(job_id)
        config = EmailJobConfig(**job.config)

        email_template = await self._templates.get_email_template(config.email_template_id)
        if email_template is None:
            await self._fail_job(job_id, f"Email template {config.email_template_id} not found")
            return

        smtp = await self._settings.get_smtp_config(config.smtp_config_id)
        if smtp is None:
            await self._fail_job(job_id, f"SMTP config {config.smtp_config_id} not found")
            return

        app_settings = await self._settings.get_app_settings()
        throttle = SendThrottle(
            delay_ms=config.delay_ms,
            daily_limit=app_settings.max_emails_per_day,
            sent_today=await self._jobs.count_sent_since(start_of_day(utcnow())),
            sleep=self._sleep,
        )

        recipients = await self._jobs.list_recipients(job_id)
        run_id = await self._claim_run(job_id)
        logger.info(
            f"[{job_id}] Sending to {len(recipients)} recipients via {smtp.host} "
            f"(delay {throttle.delay_ms}ms, {throttle.remaining} left today)"
        )
        subject_template = config.subject or email_template.subject

        for recipient in recipients:
            if await self._should_stop(job_id, run_id):
                await self._stop_run(job_id)
                return
            # Sent earlier, or failed and not reset for retry
            if recipient.email_status != EmailStatus.PENDING:
                continue

            data = recipient.template_data()
            try:
                if throttle.exhausted:
                    raise EmailDispatchError(f"Daily email limit of {throttle.daily_limit} reached")
                if not recipient.email:
                    raise EmailDispatchError("Recipient has no email address")

                attachments = []
                if recipient.certificate_path:
                    attachments.append(
                        Attachment(
                            filename=f"Certificate_{sanitize_filename(recipient.full_name)}.pdf",
                            path=recipient.certificate_path,
                        )
                    )

                await throttle.wait_turn()
                if await self._should_stop(job_id, run_id):
                    await self._stop_run(job_id)
                    return
                await self._send(
                    recipient.email,
                    replace_template_vars(subject_template, data),
                    replace_template_vars(email_template.html_content, data),
                    smtp,
                    attachments,
                )
                throttle.record_sent()
                await self._jobs.update_recipient(
                    recipient.id,
                    email_status=EmailStatus.SENT.value,
                    sent_at=utcnow(),
                    error_message=None,
                )
                succeeded = True
            except Exception as e:
                logger.error(f"[{job_id}] Failed for {recipient.email or recipient.full_name}: {e}")
                await self._jobs.update_recipient(
                    recipient.id,
                    email_status=EmailStatus.FAILED.value,
                    error_message=_error_text(e),
                )
                succeeded = False

            await self._record_progress(job_id, succeeded)

        await self._finish(job_id, run_id)

    # ── Retry / cancel / delete ────────────────────────────────────────────────

    async def retry_failed(self, job_id: str) -> int:
        """
        Reset failed recipients so the next run processes exactly them.

        Returns the number of recipients reset. Does not start the run.
        """
        job = await self._load_job(job_id)
        if job.status == JobStatus.PROCESSING:
            raise InvalidJobStateError("Job is still processing")

        reset = await self._jobs.reset_failed_recipients(job_id)
        await self._jobs.update_job(
            job_id,
            status=JobStatus.PENDING.value,
            failed_count=0,
            processed_count=max(0, job.processed_count - reset),
            completed_at=None,
            error_message=None,
        )
        logger.info(f"[{job_id}] {reset} recipient(s) reset for retry.")
        return reset

    async def cancel_job(self, job_id: str) -> BatchJob:
        job = await self._load_job(job_id)
        if job.is_terminal:
            raise InvalidJobStateError(f"Job is already {job.status}")

        cancelled = await self._jobs.update_job(
            job_id,
            expected_status=job.status,
            status=JobStatus.CANCELLED.value,
            completed_at=utcnow(),
        )
        if cancelled is None:
            raise InvalidJobStateError("Job changed state, try again")

        self._publisher.publish(
            job_id, cancelled.processed_count, cancelled.total_count, JobStatus.CANCELLED.value
        )
        logger.info(f"[{job_id}] Job cancelled.")
        return cancelled

    async def delete_job(self, job_id: str) -> None:
        if not await self._jobs.delete_job(job_id):
            raise NotFoundError("Job not found")

    async def get_email_stats(self) -> dict:
        sent_today = await self._jobs.count_sent_since(start_of_day(utcnow()))
        app_settings = await self._settings.get_app_settings()
        return {
            "emails_sent_today": sent_today,
            "daily_limit": app_settings.max_emails_per_day,
            "remaining": max(0, app_settings.max_emails_per_day - sent_today),
        }

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _load_job(self, job_id: str) -> BatchJob:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    async def _claim_run(self, job_id: str) -> str:
        run_id = generate_id()
        await self._jobs.update_job(
            job_id, status=JobStatus.PROCESSING.value, run_id=run_id, error_message=None
        )
        return run_id

    async def _should_stop(self, job_id: str, run_id: str) -> bool:
        """True once the job left processing or another run took it over."""
        job = await self._jobs.get_job(job_id)
        return job is None or job.status != JobStatus.PROCESSING or job.run_id != run_id

    async def _record_progress(self, job_id: str, succeeded: bool) -> None:
        job = await self._jobs.record_outcome(job_id, succeeded)
        if job is not None:
            self._publisher.publish(
                job_id, job.processed_count, job.total_count, JobStatus.PROCESSING.value
            )

    async def _finish(self, job_id: str, run_id: str, output_path: Optional[str] = None) -> None:
        job = await self._load_job(job_id)
        if job.run_id != run_id:
            await self._stop_run(job_id)
            return
        status = JobStatus.COMPLETED if job.failed_count < job.total_count else JobStatus.FAILED
        fields: dict = {"status": status.value, "completed_at": utcnow()}
        if output_path:
            fields["output_path"] = output_path

        finished = await self._jobs.update_job(
            job_id, expected_status=JobStatus.PROCESSING.value, **fields
        )
        if finished is None:
            # Cancelled while the last recipient was in flight
            await self._stop_run(job_id)
            return

        logger.info(
            f"[{job_id}] Job {status.value}: {finished.success_count} succeeded, "
            f"{finished.failed_count} failed of {finished.total_count}."
        )
        self._publisher.publish(
            job_id, finished.processed_count, finished.total_count, JobStatus.COMPLETED.value
        )

    async def _stop_run(self, job_id: str) -> None:
        job = await self._jobs.get_job(job_id)
        if job is None:
            logger.info(f"[{job_id}] Job deleted, stopping.")
            return
        logger.info(f"[{job_id}] Job is {job.status}, stopping this run.")
        if job.status == JobStatus.CANCELLED:
            self._publisher.publish(
                job_id, job.processed_count, job.total_count, JobStatus.CANCELLED.value
            )

    async def _fail_job(self, job_id: str, reason: str) -> None:
        logger.error(f"[{job_id}] Job failed: {reason}")
        job = await self._jobs.update_job(
            job_id,
            status=JobStatus.FAILED.value,
            error_message=reason,
            completed_at=utcnow(),
        )
        if job is not None:
            self._publisher.publish(job_id, job.processed_count, job.total_count, JobStatus.FAILED.value)


def _error_text(error: Exception) -> str:
    return str(error) or error.__class__.__name__
