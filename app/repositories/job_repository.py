"""
repositories/job_repository.py
MongoDB access for batch jobs and their recipients.
"""
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from app.models.job_model import BatchJob, EmailStatus, Recipient

_NO_ID = {"_id": 0}


class JobRepository:
    """Database operations for the batch_jobs and recipients collections."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._jobs = db.batch_jobs
        self._recipients = db.recipients

    async def create_job(self, job: BatchJob) -> BatchJob:
        await self._jobs.insert_one(job.model_dump())
        return job

    async def insert_recipients(self, recipients: list[Recipient]) -> int:
        if not recipients:
            return 0
        result = await self._recipients.insert_many([r.model_dump() for r in recipients])
        return len(result.inserted_ids)

    async def get_job(self, job_id: str) -> Optional[BatchJob]:
        doc = await self._jobs.find_one({"id": job_id}, _NO_ID)
        return BatchJob(**doc) if doc else None

    async def list_jobs(
        self,
        job_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[BatchJob]:
        query: dict = {}
        if job_type:
            query["type"] = job_type
        if status:
            query["status"] = status
        cursor = self._jobs.find(query, _NO_ID).sort("created_at", DESCENDING).limit(limit)
        return [BatchJob(**doc) async for doc in cursor]

    async def update_job(
        self,
        job_id: str,
        expected_status: Optional[str] = None,
        **fields,
    ) -> Optional[BatchJob]:
        """
        Set fields on a job and return the updated document.

        With expected_status, the update only applies while the job is still
        in that status; None is returned otherwise.
        """
        query: dict = {"id": job_id}
        if expected_status:
            query["status"] = expected_status
        doc = await self._jobs.find_one_and_update(
            query,
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return BatchJob(**doc) if doc else None

    async def record_outcome(self, job_id: str, succeeded: bool) -> Optional[BatchJob]:
        """Count one processed recipient in a single atomic update."""
        outcome = "success_count" if succeeded else "failed_count"
        doc = await self._jobs.find_one_and_update(
            {"id": job_id},
            {"$inc": {"processed_count": 1, outcome: 1}},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return BatchJob(**doc) if doc else None

    async def delete_job(self, job_id: str) -> bool:
        result = await self._jobs.delete_one({"id": job_id})
        if result.deleted_count:
            await self._recipients.delete_many({"batch_job_id": job_id})
        return bool(result.deleted_count)

    # ── Recipients ─────────────────────────────────────────────────────────────

    async def list_recipients(self, job_id: str) -> list[Recipient]:
        """All recipients of a job in import order."""
        cursor = self._recipients.find({"batch_job_id": job_id}, _NO_ID).sort("sequence", ASCENDING)
        return [Recipient(**doc) async for doc in cursor]

    async def find_recipients(
        self,
        job_id: str,
        email_status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Recipient], int]:
        query: dict = {"batch_job_id": job_id}
        if email_status:
            query["email_status"] = email_status
        cursor = (
            self._recipients.find(query, _NO_ID)
            .sort("sequence", ASCENDING)
            .skip(skip)
            .limit(limit)
        )
        records = [Recipient(**doc) async for doc in cursor]
        total = await self._recipients.count_documents(query)
        return records, total

    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        doc = await self._recipients.find_one({"id": recipient_id}, _NO_ID)
        return Recipient(**doc) if doc else None

    async def update_recipient(self, recipient_id: str, **fields) -> None:
        await self._recipients.update_one({"id": recipient_id}, {"$set": fields})

    async def reset_failed_recipients(self, job_id: str) -> int:
        """Return failed recipients to pending and clear their errors."""
        result = await self._recipients.update_many(
            {
                "batch_job_id": job_id,
                "$or": [
                    {"email_status": EmailStatus.FAILED.value},
                    {"error_message": {"$ne": None}},
                ],
            },
            {"$set": {"email_status": EmailStatus.PENDING.value, "error_message": None}},
        )
        return result.modified_count

    async def count_sent_since(self, since: datetime) -> int:
        return await self._recipients.count_documents(
            {"email_status": EmailStatus.SENT.value, "sent_at": {"$gte": since}}
        )
