"""
utils/helpers.py
Shared utility functions used across services.
"""
import re
import uuid
import logging
from datetime import datetime, timezone

from app.core.config import settings

# Configure module logger
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def get_logger(name: str) -> logging.Logger:
    """Return a named logger."""
    return logging.getLogger(name)


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


def replace_template_vars(text: str, data: dict[str, str]) -> str:
    """
    Replace {{placeholder}} tokens with values from data.

    Identifiers match the keys case-insensitively. Tokens without a
    matching key are replaced with an empty string.
    """
    lookup: dict[str, str] = {}
    for key, value in data.items():
        lookup.setdefault(key.lower(), "" if value is None else str(value))

    return PLACEHOLDER_RE.sub(lambda m: lookup.get(m.group(1).lower(), ""), text)


def extract_placeholders(text: str) -> list[str]:
    """Return the unique lowercase placeholder names in order of appearance."""
    found: list[str] = []
    for match in PLACEHOLDER_RE.finditer(text):
        name = match.group(1).lower()
        if name not in found:
            found.append(name)
    return found


def utcnow() -> datetime:
    # Naive UTC, matching what MongoDB returns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
