"""
repositories/settings_repository.py
MongoDB access for SMTP configurations and the app settings singleton.

SMTP passwords are stored in plaintext. Everything that reads them goes
through this class, so an encrypted secret store can replace it here.
"""
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from app.models.settings_model import APP_SETTINGS_ID, AppSettings, SmtpConfig
from app.utils.helpers import utcnow

_NO_ID = {"_id": 0}


class SettingsRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._smtp = db.smtp_configs
        self._app = db.app_settings

    # ── App settings ───────────────────────────────────────────────────────────

    async def get_app_settings(self) -> AppSettings:
        """Return the settings singleton, creating it with defaults on first use."""
        doc = await self._app.find_one({"id": APP_SETTINGS_ID}, _NO_ID)
        if doc:
            return AppSettings(**doc)
        defaults = AppSettings()
        await self._app.update_one(
            {"id": APP_SETTINGS_ID},
            {"$setOnInsert": defaults.model_dump()},
            upsert=True,
        )
        return defaults

    async def update_app_settings(self, **fields) -> AppSettings:
        await self.get_app_settings()
        fields["updated_at"] = utcnow()
        doc = await self._app.find_one_and_update(
            {"id": APP_SETTINGS_ID},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return AppSettings(**doc)

    # ── SMTP configs ───────────────────────────────────────────────────────────

    async def list_smtp_configs(self) -> list[SmtpConfig]:
        cursor = self._smtp.find({}, _NO_ID).sort("created_at", DESCENDING)
        return [SmtpConfig(**doc) async for doc in cursor]

    async def get_smtp_config(self, config_id: str) -> Optional[SmtpConfig]:
        doc = await self._smtp.find_one({"id": config_id}, _NO_ID)
        return SmtpConfig(**doc) if doc else None

    async def get_default_smtp_config(self) -> Optional[SmtpConfig]:
        doc = await self._smtp.find_one({"is_default": True}, _NO_ID)
        return SmtpConfig(**doc) if doc else None

    async def create_smtp_config(self, config: SmtpConfig) -> SmtpConfig:
        if config.is_default:
            await self._unset_defaults()
        await self._smtp.insert_one(config.model_dump())
        return config

    async def update_smtp_config(self, config_id: str, **fields) -> Optional[SmtpConfig]:
        fields["updated_at"] = utcnow()
        doc = await self._smtp.find_one_and_update(
            {"id": config_id},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        if fields.get("is_default"):
            await self._unset_defaults(except_id=config_id)
        return SmtpConfig(**doc)

    async def delete_smtp_config(self, config_id: str) -> bool:
        result = await self._smtp.delete_one({"id": config_id})
        return bool(result.deleted_count)

    async def _unset_defaults(self, except_id: Optional[str] = None) -> None:
        query: dict = {"is_default": True}
        if except_id:
            query["id"] = {"$ne": except_id}
        await self._smtp.update_many(query, {"$set": {"is_default": False}})
