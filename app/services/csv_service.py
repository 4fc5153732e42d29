"""
services/csv_service.py
Parses uploaded CSV files into header/row records and validates them for
certificate generation.
"""
import io
import re
from typing import Optional

import pandas as pd

from app.core.exceptions import CsvParseError
from app.models.csv_model import CsvRowError, CsvValidationResult, ParsedCsv
from app.utils.helpers import get_logger

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Header synonyms, in priority order, matched against lowercased headers
NAME_KEYS = ("name", "full name", "full_name", "fullname")
FIRST_NAME_KEYS = ("first_name", "first name", "firstname")
LAST_NAME_KEYS = ("last_name", "last name", "lastname")
EMAIL_KEYS = ("email", "e_mail", "e-mail")

MAX_FILENAME_LENGTH = 100


def _keep_long_line(bad_line: list[str]) -> list[str]:
    # pandas drops the surplus values and keeps the row
    logger.warning(f"CSV row has {len(bad_line)} values, more than the header; extra values dropped.")
    return bad_line


def parse_csv(file_bytes: bytes) -> ParsedCsv:
    """
    Parse a CSV upload into headers and row records.

    Header collisions after lowercasing keep the first occurrence. Rows
    shorter than the header are kept, without the missing columns, and
    reported as row errors.
    """
    try:
        df = pd.read_csv(
            io.BytesIO(file_bytes),
            dtype=object,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            index_col=False,
            encoding="utf-8-sig",
            engine="python",
            on_bad_lines=_keep_long_line,
        )
    except pd.errors.EmptyDataError:
        logger.info("CSV upload is empty.")
        return ParsedCsv()
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as e:
        logger.error(f"CSV parsing failed: {e}")
        raise CsvParseError(f"Failed to parse CSV: {e}") from e

    columns = [str(col).strip() for col in df.columns]

    headers: list[str] = []
    seen: set[str] = set()
    for col in columns:
        if col.lower() not in seen:
            seen.add(col.lower())
            headers.append(col)

    rows: list[dict[str, str]] = []
    errors: list[CsvRowError] = []
    for index, values in enumerate(df.itertuples(index=False, name=None)):
        row: dict[str, str] = {}
        missing = 0
        for col, value in zip(columns, values):
            if pd.isna(value):
                missing += 1
                continue
            value = str(value).strip()
            row.setdefault(col, value)
            row.setdefault(col.lower(), value)
        if missing:
            errors.append(
                CsvRowError(
                    row=index + 2,
                    message=f"Expected {len(columns)} values, found {len(columns) - missing}",
                )
            )
        rows.append(row)

    logger.info(f"Parsed {len(rows)} rows with {len(headers)} columns from CSV.")
    return ParsedCsv(headers=headers, rows=rows, total_rows=len(rows), errors=errors)


def _matches_required(header: str, field: str) -> bool:
    h = re.sub(r"\s+", "", header.lower())
    f = field.lower()
    return h == f or f in h or (f == "name" and h in ("fullname", "full_name"))


def validate_csv(parsed: ParsedCsv, required_fields: Optional[list[str]] = None) -> CsvValidationResult:
    """
    Check a parsed CSV for certificate generation.

    Only the name column is required by default; email problems are
    warnings because certificates can be generated without an address.
    """
    required_fields = required_fields if required_fields is not None else ["name"]
    errors: list[str] = []
    warnings: list[str] = []

    if parsed.total_rows == 0:
        errors.append("CSV file is empty or has no data rows")
        return CsvValidationResult(is_valid=False, errors=errors, warnings=warnings)

    for field in required_fields:
        if not any(_matches_required(h, field) for h in parsed.headers):
            errors.append(f'Required field "{field}" not found in CSV headers')

    empty_emails = 0
    invalid_emails = 0
    for row in parsed.rows:
        email = extract_email(row)
        if not email:
            empty_emails += 1
        elif not EMAIL_RE.match(email):
            invalid_emails += 1

    if empty_emails:
        warnings.append(f"{empty_emails} row(s) have empty email addresses")
    if invalid_emails:
        warnings.append(f"{invalid_emails} row(s) have invalid email addresses")

    for error in parsed.errors:
        errors.append(f"Row {error.row}: {error.message}")

    return CsvValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _first_value(row: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = row.get(key, "").strip()
        if value:
            return value
    return ""


def extract_name(row: dict[str, str]) -> str:
    """Full name from the row, falling back to first + last name, then "Unknown"."""
    name = _first_value(row, NAME_KEYS)
    if name:
        return name
    combined = f"{_first_value(row, FIRST_NAME_KEYS)} {_first_value(row, LAST_NAME_KEYS)}".strip()
    return combined or "Unknown"


def extract_email(row: dict[str, str]) -> str:
    return _first_value(row, EMAIL_KEYS).lower()


def sanitize_filename(value: str) -> str:
    """Keep letters, digits, spaces, hyphens and underscores; spaces become underscores."""
    cleaned = re.sub(r"[^A-Za-z0-9\s_-]", "", value)
    cleaned = re.sub(r"\s+", "_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]
