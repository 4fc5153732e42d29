"""
models/csv_model.py
Result models for CSV import and validation.
"""
from pydantic import BaseModel, Field


class CsvRowError(BaseModel):
    row: int
    message: str


class ParsedCsv(BaseModel):
    """
    Parsed delimited-text upload.

    Each row maps every header to its value twice: under the original
    (trimmed) header and under its lowercased form.
    """
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, str]] = Field(default_factory=list)
    total_rows: int = 0
    errors: list[CsvRowError] = Field(default_factory=list)


class CsvValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
