"""
models/template_model.py
Certificate and email template documents plus their request models.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.utils.helpers import generate_id, utcnow


class FontWeight(str, Enum):
    NORMAL = "normal"
    BOLD = "bold"
    ITALIC = "italic"
    BOLD_ITALIC = "boldItalic"


class TextAlignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class FieldConfig(BaseModel):
    """
    One draw instruction on a certificate.

    x/y are measured from the top-left corner of the page, in points.
    """
    id: str = Field(default_factory=generate_id)
    field: str
    x: float
    y: float
    font_size: float = Field(default=24, gt=0)
    font_family: str = "Helvetica"
    font_weight: FontWeight = FontWeight.NORMAL
    color: str = "#000000"
    alignment: TextAlignment = TextAlignment.LEFT
    max_width: Optional[float] = None

    class Config:
        use_enum_values = True
        validate_default = True


class CertificateTemplate(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    template_data: bytes = b""
    field_configs: list[FieldConfig] = Field(default_factory=list)
    page_count: int = 1
    width: float = 0
    height: float = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def summary(self) -> dict:
        return self.model_dump(exclude={"template_data"})


class CertificateTemplateUpdate(BaseModel):
    name: Optional[str] = None
    field_configs: Optional[list[FieldConfig]] = None


class EmailTemplate(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    subject: str
    html_content: str
    placeholders: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EmailTemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    html_content: str = Field(min_length=1)


class EmailTemplateUpdate(BaseModel):
    name: Optional[str] = None
    subject: Optional[str] = None
    html_content: Optional[str] = None


class CertificatePreviewRequest(BaseModel):
    template_id: str
    field_configs: Optional[list[FieldConfig]] = None
    sample_data: Optional[dict[str, str]] = None


class EmailPreviewRequest(BaseModel):
    template_id: Optional[str] = None
    html_content: Optional[str] = None
    sample_data: Optional[dict[str, str]] = None
