"""
models/settings_model.py
SMTP relay configurations and the application settings singleton.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from app.core.config import settings
from app.utils.helpers import generate_id, utcnow

APP_SETTINGS_ID = "default"


class SmtpConfig(BaseModel):
    """
    Connection parameters for an SMTP relay.

    The password is stored as given; it is never included in API responses.
    """
    id: str = Field(default_factory=generate_id)
    name: str = ""
    host: str
    port: int
    username: str
    password: str
    from_name: Optional[str] = None
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def public_dict(self) -> dict:
        return self.model_dump(exclude={"password"})


class SmtpConfigCreate(BaseModel):
    name: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: int = Field(gt=0, lt=65536)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    from_name: Optional[str] = None
    is_default: bool = False


class SmtpConfigUpdate(BaseModel):
    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, gt=0, lt=65536)
    username: Optional[str] = None
    password: Optional[str] = None
    from_name: Optional[str] = None
    is_default: Optional[bool] = None


class SmtpTestRequest(BaseModel):
    """Either the id of a stored config or a full set of connection parameters."""
    id: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None


class TestSendRequest(BaseModel):
    to: EmailStr
    subject: str = Field(min_length=1)
    html_content: str = Field(min_length=1)
    smtp_config_id: Optional[str] = None


class AppSettings(BaseModel):
    id: str = APP_SETTINGS_ID
    default_output_path: str = settings.DEFAULT_OUTPUT_PATH
    email_delay_ms: int = settings.EMAIL_DELAY_MS
    max_emails_per_day: int = settings.MAX_EMAILS_PER_DAY
    updated_at: datetime = Field(default_factory=utcnow)


class AppSettingsUpdate(BaseModel):
    default_output_path: Optional[str] = None
    email_delay_ms: Optional[int] = Field(default=None, ge=0)
    max_emails_per_day: Optional[int] = Field(default=None, ge=0)
