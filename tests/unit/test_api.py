import base64
import io
import json
import zipfile
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.deps import (
    get_job_repository,
    get_publisher,
    get_settings_repository,
    get_template_repository,
)
from app.main import app
from app.models.job_model import BatchJob, Recipient
from app.services.email_service import SmtpVerifyResult
from app.services.job_service import JobService

PEOPLE_CSV = b"name,email\nJane Doe,jane@example.com\nAmir,amir@example.com\nLi Wei,\n"


@pytest.fixture()
def start():
    with patch.object(JobService, "start") as mock_start:
        yield mock_start


@pytest.fixture()
def client(job_repo, template_repo, settings_repo, publisher, start):
    app.dependency_overrides[get_job_repository] = lambda: job_repo
    app.dependency_overrides[get_template_repository] = lambda: template_repo
    app.dependency_overrides[get_settings_repository] = lambda: settings_repo
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()


def _add_job(job_repo, status: str = "completed", count: int = 3, **fields) -> BatchJob:
    job = BatchJob(type="certificate", status=status, total_count=count, **fields)
    job_repo.jobs[job.id] = job
    for i in range(count):
        r = Recipient(batch_job_id=job.id, sequence=i, email=f"s{i}@example.com", full_name=f"Student {i}")
        job_repo.recipients[r.id] = r
    return job


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestCsvRoutes:
    def test_parse(self, client) -> None:
        response = client.post("/api/csv/parse", files={"csv": ("people.csv", PEOPLE_CSV, "text/csv")})

        assert response.status_code == 200
        body = response.json()
        assert body["headers"] == ["name", "email"]
        assert body["total_rows"] == 3
        assert len(body["preview"]) == 3
        assert body["validation"]["is_valid"] is True
        assert body["validation"]["warnings"] == ["1 row(s) have empty email addresses"]

    def test_rejects_non_csv(self, client) -> None:
        response = client.post("/api/csv/parse", files={"csv": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 400


class TestTemplateRoutes:
    def test_upload_pdf(self, client, template_repo, template_pdf_bytes) -> None:
        response = client.post(
            "/api/templates/certificate",
            files={"template": ("award.pdf", template_pdf_bytes, "application/pdf")},
            data={"name": "Award", "field_configs": json.dumps([{"field": "name", "x": 100, "y": 100}])},
        )

        assert response.status_code == 201
        body = response.json()
        assert "template_data" not in body
        assert body["name"] == "Award"
        assert round(body["width"]) == 842
        assert body["field_configs"][0]["alignment"] == "left"
        assert template_repo.certificates[body["id"]].template_data == template_pdf_bytes

    def test_bad_field_configs(self, client, template_pdf_bytes) -> None:
        response = client.post(
            "/api/templates/certificate",
            files={"template": ("award.pdf", template_pdf_bytes, "application/pdf")},
            data={"field_configs": json.dumps([{"field": "name"}])},
        )

        assert response.status_code == 400

    def test_template_data_is_base64(self, client, template_pdf_bytes) -> None:
        response = client.get("/api/templates/certificate/tpl-1/data")

        assert response.status_code == 200
        assert base64.b64decode(response.json()["data"]) == template_pdf_bytes

    def test_unknown_template(self, client) -> None:
        response = client.get("/api/templates/certificate/nope")

        assert response.status_code == 404
        assert response.json() == {"detail": "Template not found"}

    def test_email_template_placeholders(self, client) -> None:
        response = client.post(
            "/api/templates/email",
            json={"name": "Done", "subject": "Hi {{Name}}", "html_content": "<p>{{event}} {{name}}</p>"},
        )

        assert response.status_code == 201
        assert response.json()["placeholders"] == ["name", "event"]


class TestCertificateRoutes:
    def test_preview(self, client) -> None:
        response = client.post("/api/certificates/preview", json={"template_id": "tpl-1"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_generate_starts_job(self, client, job_repo, start, tmp_path) -> None:
        response = client.post(
            "/api/certificates/generate",
            files={"csv": ("people.csv", PEOPLE_CSV, "text/csv")},
            data={"template_id": "tpl-1", "output_path": str(tmp_path)},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["total_recipients"] == 3
        assert body["warnings"] == ["1 row(s) have empty email addresses"]
        start.assert_called_once_with(body["job_id"])
        assert job_repo.jobs[body["job_id"]].status == "pending"

    def test_generate_requires_template(self, client, job_repo, start, tmp_path) -> None:
        response = client.post(
            "/api/certificates/generate",
            files={"csv": ("people.csv", PEOPLE_CSV, "text/csv")},
            data={"output_path": str(tmp_path)},
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "Template ID is required"}
        start.assert_not_called()
        assert job_repo.jobs == {}

    def test_generate_rejects_invalid_csv(self, client, tmp_path) -> None:
        response = client.post(
            "/api/certificates/generate",
            files={"csv": ("people.csv", b"email\njane@example.com\n", "text/csv")},
            data={"template_id": "tpl-1", "output_path": str(tmp_path)},
        )

        assert response.status_code == 400
        assert response.json()["details"] == ['Required field "name" not found in CSV headers']

    def test_download(self, client, job_repo, template_pdf_bytes, tmp_path) -> None:
        job = _add_job(job_repo, count=1)
        recipient = next(iter(job_repo.recipients.values()))
        path = tmp_path / "001_Student_0.pdf"
        path.write_bytes(template_pdf_bytes)
        job_repo.recipients[recipient.id] = recipient.model_copy(update={"certificate_path": str(path)})

        response = client.get(f"/api/certificates/download/{recipient.id}")

        assert response.status_code == 200
        assert response.content == template_pdf_bytes
        assert "Certificate_Student_0.pdf" in response.headers["content-disposition"]

    def test_download_without_certificate(self, client, job_repo) -> None:
        _add_job(job_repo, count=1)
        recipient = next(iter(job_repo.recipients.values()))

        response = client.get(f"/api/certificates/download/{recipient.id}")

        assert response.status_code == 404

    def test_download_all(self, client, job_repo, template_pdf_bytes, tmp_path) -> None:
        job = _add_job(job_repo, count=2)
        first = sorted(job_repo.recipients.values(), key=lambda r: r.sequence)[0]
        path = tmp_path / "001_Student_0.pdf"
        path.write_bytes(template_pdf_bytes)
        job_repo.recipients[first.id] = first.model_copy(update={"certificate_path": str(path)})

        response = client.get(f"/api/certificates/download-all/{job.id}")

        assert response.status_code == 200
        archive = zipfile.ZipFile(io.BytesIO(response.content))
        assert archive.namelist() == ["001_Student_0.pdf"]


class TestEmailRoutes:
    def test_preview_inline_html(self, client) -> None:
        response = client.post(
            "/api/email/preview",
            json={"html_content": "Hello {{name}} {{unknown}}!", "sample_data": {"name": "Amir"}},
        )

        assert response.json() == {"html": "Hello Amir !"}

    def test_preview_stored_template(self, client) -> None:
        response = client.post("/api/email/preview", json={"template_id": "mail-1"})

        assert response.json()["html"] == "<p>Hello John Doe, welcome to </p>"

    def test_test_send_uses_default_config(self, client, settings_repo) -> None:
        with patch("app.api.email.send_email", new_callable=AsyncMock) as mock_send:
            response = client.post(
                "/api/email/test-send",
                json={"to": "jane@example.com", "subject": "Test", "html_content": "<p>Hi {{name}}</p>"},
            )

        assert response.status_code == 200
        assert mock_send.await_args.args == (
            "jane@example.com", "Test", "<p>Hi John Doe</p>", settings_repo.smtp["smtp-1"]
        )

    def test_test_send_without_config(self, client, settings_repo) -> None:
        settings_repo.smtp.clear()

        response = client.post(
            "/api/email/test-send",
            json={"to": "jane@example.com", "subject": "Test", "html_content": "<p>Hi</p>"},
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "No SMTP configuration found"}

    def test_send_batch(self, client, job_repo, start) -> None:
        source = _add_job(job_repo, count=3)

        response = client.post(
            "/api/email/send-batch",
            json={
                "certificate_job_id": source.id,
                "email_template_id": "mail-1",
                "smtp_config_id": "smtp-1",
                "delay_ms": 30000,
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["total_recipients"] == 3
        assert body["estimated_time_minutes"] == 2
        start.assert_called_once_with(body["job_id"])

    def test_stats(self, client) -> None:
        response = client.get("/api/email/stats")

        assert response.json() == {"emails_sent_today": 0, "daily_limit": 500, "remaining": 500}


class TestJobRoutes:
    def test_list_filters(self, client, job_repo) -> None:
        done = _add_job(job_repo, status="completed")
        _add_job(job_repo, status="failed")

        response = client.get("/api/jobs", params={"status": "completed"})

        assert [j["id"] for j in response.json()] == [done.id]

    def test_get_includes_recipients(self, client, job_repo) -> None:
        job = _add_job(job_repo)

        response = client.get(f"/api/jobs/{job.id}")

        assert [r["sequence"] for r in response.json()["recipients"]] == [0, 1, 2]

    def test_progress(self, client, job_repo) -> None:
        job = _add_job(job_repo, status="processing", processed_count=1, success_count=1)

        response = client.get(f"/api/jobs/{job.id}/progress")

        body = response.json()
        assert body["status"] == "processing"
        assert body["percentage"] == 33

    def test_unknown_job(self, client) -> None:
        response = client.get("/api/jobs/missing/progress")

        assert response.status_code == 404
        assert response.json() == {"detail": "Job not found"}

    def test_recipients_pagination(self, client, job_repo) -> None:
        job = _add_job(job_repo, count=5)

        response = client.get(f"/api/jobs/{job.id}/recipients", params={"page": 2, "limit": 2})

        body = response.json()
        assert [r["sequence"] for r in body["recipients"]] == [2, 3]
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}

    def test_events_for_finished_job(self, client, job_repo, publisher) -> None:
        job = _add_job(job_repo, status="completed", processed_count=3, success_count=3)

        response = client.get(f"/api/jobs/{job.id}/events")

        assert response.headers["content-type"].startswith("text/event-stream")
        lines = [line for line in response.text.splitlines() if line.startswith("data: ")]
        event = json.loads(lines[0][len("data: "):])
        assert event == {"job_id": job.id, "processed": 3, "total": 3, "percentage": 100, "status": "completed"}
        assert publisher.subscriber_count(job.id) == 0

    def test_events_include_final_update_published_during_lookup(self, client, job_repo, publisher) -> None:
        job = _add_job(job_repo, status="processing", processed_count=2, success_count=2)
        snapshot = job_repo.get_job

        async def finishing_lookup(job_id):
            current = await snapshot(job_id)
            publisher.publish(job_id, 3, 3, "completed")
            return current

        job_repo.get_job = finishing_lookup

        response = client.get(f"/api/jobs/{job.id}/events")

        lines = [line for line in response.text.splitlines() if line.startswith("data: ")]
        statuses = [json.loads(line[len("data: "):])["status"] for line in lines]
        assert statuses == ["processing", "completed"]
        assert publisher.subscriber_count(job.id) == 0

    def test_events_for_unknown_job(self, client, publisher) -> None:
        response = client.get("/api/jobs/missing/events")

        assert response.status_code == 404
        assert publisher.subscriber_count("missing") == 0

    def test_retry_failed_restarts(self, client, job_repo, start) -> None:
        job = _add_job(job_repo, status="completed", processed_count=3, success_count=2, failed_count=1)
        failed = sorted(job_repo.recipients.values(), key=lambda r: r.sequence)[1]
        job_repo.recipients[failed.id] = failed.model_copy(update={"error_message": "boom"})

        response = client.post(f"/api/jobs/{job.id}/retry-failed")

        assert response.json()["retried_count"] == 1
        start.assert_called_once_with(job.id)
        assert job_repo.jobs[job.id].status == "pending"

    def test_cancel_finished_job_conflicts(self, client, job_repo) -> None:
        job = _add_job(job_repo, status="completed")

        response = client.post(f"/api/jobs/{job.id}/cancel")

        assert response.status_code == 409

    def test_cancel(self, client, job_repo) -> None:
        job = _add_job(job_repo, status="processing")

        response = client.post(f"/api/jobs/{job.id}/cancel")

        assert response.json() == {"success": True, "status": "cancelled"}

    def test_delete(self, client, job_repo) -> None:
        job = _add_job(job_repo)

        assert client.delete(f"/api/jobs/{job.id}").status_code == 200
        assert client.delete(f"/api/jobs/{job.id}").status_code == 404
        assert job_repo.recipients == {}


class TestSettingsRoutes:
    def test_get_settings(self, client) -> None:
        response = client.get("/api/settings")

        assert response.json()["max_emails_per_day"] == 500

    def test_update_settings(self, client) -> None:
        response = client.put("/api/settings", json={"email_delay_ms": 5000})

        assert response.json()["email_delay_ms"] == 5000

    def test_smtp_password_never_returned(self, client) -> None:
        created = client.post(
            "/api/settings/smtp",
            json={
                "name": "Gmail",
                "host": "smtp.gmail.com",
                "port": 587,
                "username": "me@gmail.com",
                "password": "app-password",
            },
        )
        listed = client.get("/api/settings/smtp")

        assert created.status_code == 201
        assert "password" not in created.json()
        assert all("password" not in c for c in listed.json())

    def test_smtp_test_requires_parameters(self, client) -> None:
        response = client.post("/api/settings/smtp/test", json={"host": "smtp.example.com"})

        assert response.status_code == 400

    def test_smtp_test_stored_config(self, client) -> None:
        result = SmtpVerifyResult(success=True, message="SMTP connection successful")
        with patch("app.api.settings.verify_smtp", new_callable=AsyncMock, return_value=result) as mock_verify:
            response = client.post("/api/settings/smtp/test", json={"id": "smtp-1"})

        assert response.json() == {"success": True, "message": "SMTP connection successful"}
        assert mock_verify.await_args.args[0].host == "smtp.example.com"
