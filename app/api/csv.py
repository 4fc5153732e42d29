"""
api/csv.py
CSV upload parsing and validation preview.
"""
from fastapi import APIRouter, File, HTTPException, UploadFile

from app.core.config import settings
from app.services.csv_service import parse_csv, validate_csv

router = APIRouter(prefix="/api/csv", tags=["CSV"])

PREVIEW_ROWS = 10


async def read_csv_upload(csv_file: UploadFile) -> bytes:
    """Read an uploaded CSV, rejecting other file types and oversized files."""
    content_type = (csv_file.content_type or "").lower()
    filename = (csv_file.filename or "").lower()
    if "csv" not in content_type and not filename.endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are allowed.")

    content = await csv_file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="CSV file is too large.")
    return content


@router.post("/parse")
async def parse_csv_upload(csv: UploadFile = File(...)):
    """Parse a CSV and return its headers, a preview and the validation result."""
    parsed = parse_csv(await read_csv_upload(csv))
    return {
        "headers": parsed.headers,
        "total_rows": parsed.total_rows,
        "preview": parsed.rows[:PREVIEW_ROWS],
        "validation": validate_csv(parsed),
    }
