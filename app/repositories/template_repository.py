"""
repositories/template_repository.py
MongoDB access for certificate and email templates.
"""
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from app.models.template_model import CertificateTemplate, EmailTemplate

_NO_ID = {"_id": 0}


class TemplateRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._certificates = db.certificate_templates
        self._emails = db.email_templates

    # ── Certificate templates ──────────────────────────────────────────────────

    async def create_certificate_template(self, template: CertificateTemplate) -> CertificateTemplate:
        await self._certificates.insert_one(template.model_dump())
        return template

    async def get_certificate_template(self, template_id: str) -> Optional[CertificateTemplate]:
        doc = await self._certificates.find_one({"id": template_id}, _NO_ID)
        return CertificateTemplate(**doc) if doc else None

    async def list_certificate_templates(self) -> list[CertificateTemplate]:
        """Templates without their PDF bytes, newest first."""
        cursor = self._certificates.find({}, {"_id": 0, "template_data": 0}).sort("created_at", DESCENDING)
        return [CertificateTemplate(**doc) async for doc in cursor]

    async def update_certificate_template(self, template_id: str, **fields) -> Optional[CertificateTemplate]:
        doc = await self._certificates.find_one_and_update(
            {"id": template_id},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return CertificateTemplate(**doc) if doc else None

    async def delete_certificate_template(self, template_id: str) -> bool:
        result = await self._certificates.delete_one({"id": template_id})
        return bool(result.deleted_count)

    # ── Email templates ────────────────────────────────────────────────────────

    async def create_email_template(self, template: EmailTemplate) -> EmailTemplate:
        await self._emails.insert_one(template.model_dump())
        return template

    async def get_email_template(self, template_id: str) -> Optional[EmailTemplate]:
        doc = await self._emails.find_one({"id": template_id}, _NO_ID)
        return EmailTemplate(**doc) if doc else None

    async def list_email_templates(self) -> list[EmailTemplate]:
        cursor = self._emails.find({}, _NO_ID).sort("created_at", DESCENDING)
        return [EmailTemplate(**doc) async for doc in cursor]

    async def update_email_template(self, template_id: str, **fields) -> Optional[EmailTemplate]:
        doc = await self._emails.find_one_and_update(
            {"id": template_id},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return EmailTemplate(**doc) if doc else None

    async def delete_email_template(self, template_id: str) -> bool:
        result = await self._emails.delete_one({"id": template_id})
        return bool(result.deleted_count)
