"""
services/pdf_generator.py
Generates a certificate PDF by overlaying field text onto the first page of
a PDF template.
- Field positions are measured from the top-left, as the editor shows them
- The overlay is drawn with ReportLab and merged with pypdf
"""
import io
import re
from datetime import date
from typing import Optional

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel
from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.core.exceptions import CertificateRenderError
from app.models.template_model import FieldConfig, TextAlignment
from app.services.font_service import fit_font_size, resolve_font, text_width
from app.utils.helpers import get_logger

logger = get_logger(__name__)

HEX_COLOR_RE = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)


class TemplateInfo(BaseModel):
    page_count: int
    width: float
    height: float


def hex_to_rgb(color: str) -> tuple[float, float, float]:
    """Convert #rrggbb to 0-1 RGB components. Invalid input gives black."""
    match = HEX_COLOR_RE.match(color or "")
    if not match:
        return 0.0, 0.0, 0.0
    r, g, b = (int(part, 16) / 255 for part in match.groups())
    return r, g, b


def compute_text_x(width: float, x: float, alignment: str) -> float:
    """Horizontal draw origin for text of the given width anchored at x."""
    if alignment == TextAlignment.CENTER.value:
        return x - width / 2
    if alignment == TextAlignment.RIGHT.value:
        return x - width
    return x


def compute_text_y(page_height: float, y: float, font_size: float) -> float:
    """Convert a top-based y to the bottom-left PDF origin."""
    return page_height - y - font_size


def _lookup(data: dict[str, str], field: str) -> Optional[str]:
    if field in data:
        return data[field]
    lowered = field.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return None


def _read_template(template_bytes: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(template_bytes))
        page_count = len(reader.pages)
    except Exception as e:
        raise CertificateRenderError(f"Could not read PDF template: {e}") from e
    if page_count == 0:
        raise CertificateRenderError("PDF template has no pages")
    return reader


def _draw_overlay(
    width: float,
    height: float,
    field_configs: list[FieldConfig],
    data: dict[str, str],
) -> bytes:
    buffer = io.BytesIO()
    overlay = canvas.Canvas(buffer, pagesize=(width, height))

    for config in field_configs:
        value = _lookup(data, config.field)
        if value is None:
            raise CertificateRenderError(f"Missing value for field '{config.field}'")
        text = str(value)
        if not text:
            continue

        font_name = resolve_font(config.font_family, config.font_weight)
        font_size = fit_font_size(text, font_name, config.font_size, config.max_width)
        text_x = compute_text_x(text_width(text, font_name, font_size), config.x, config.alignment)
        text_y = compute_text_y(height, config.y, font_size)

        overlay.setFillColorRGB(*hex_to_rgb(config.color))
        overlay.setFont(font_name, font_size)
        overlay.drawString(text_x, text_y, text)
        logger.debug(f"Drew '{config.field}' at ({text_x:.1f}, {text_y:.1f}) in {font_name} {font_size}pt")

    overlay.showPage()
    overlay.save()
    return buffer.getvalue()


def generate_certificate_pdf(
    template_bytes: bytes,
    field_configs: list[FieldConfig],
    data: dict[str, str],
) -> bytes:
    """
    Render one certificate and return the PDF bytes.

    Steps:
      1. Open the template and measure its first page
      2. Draw every configured field with a value onto a transparent overlay
      3. Merge the overlay into page one; later pages pass through unchanged
    """
    reader = _read_template(template_bytes)
    first_page = reader.pages[0]
    width = float(first_page.mediabox.width)
    height = float(first_page.mediabox.height)

    overlay_bytes = _draw_overlay(width, height, field_configs, data)
    overlay_page = PdfReader(io.BytesIO(overlay_bytes)).pages[0]

    writer = PdfWriter()
    for i, page in enumerate(reader.pages):
        if i == 0:
            page.merge_page(overlay_page)
        writer.add_page(page)

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def default_preview_data() -> dict[str, str]:
    return {
        "name": "John Doe",
        "full_name": "John Doe",
        "email": "john.doe@example.com",
        "event_name": "Web Development Workshop",
        "date": date.today().strftime("%m/%d/%Y"),
        "certificate_id": "CERT-2024-001",
    }


def generate_preview(
    template_bytes: bytes,
    field_configs: list[FieldConfig],
    sample_data: Optional[dict[str, str]] = None,
) -> bytes:
    """Render a certificate with sample data merged over defaults."""
    data = {**default_preview_data(), **(sample_data or {})}
    for config in field_configs:
        if _lookup(data, config.field) is None:
            data[config.field] = ""
    return generate_certificate_pdf(template_bytes, field_configs, data)


def get_template_info(template_bytes: bytes) -> TemplateInfo:
    reader = _read_template(template_bytes)
    first_page = reader.pages[0]
    return TemplateInfo(
        page_count=len(reader.pages),
        width=float(first_page.mediabox.width),
        height=float(first_page.mediabox.height),
    )


def probe_template_info(template_bytes: bytes) -> TemplateInfo:
    """Like get_template_info, but falls back to A4 landscape when probing fails."""
    try:
        return get_template_info(template_bytes)
    except CertificateRenderError as e:
        logger.warning(f"Could not read template dimensions, using defaults: {e}")
        return TemplateInfo(
            page_count=1,
            width=settings.DEFAULT_PAGE_WIDTH,
            height=settings.DEFAULT_PAGE_HEIGHT,
        )


def image_to_pdf(image_bytes: bytes, dpi: Optional[int] = None) -> bytes:
    """
    Convert a PNG/JPEG certificate background into a one-page PDF template.

    The page size follows the image size at the given DPI.
    """
    dpi = dpi or settings.CERT_DPI
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise CertificateRenderError(f"Could not read image template: {e}") from e

    # ── RGBA → RGB for PDF embedding ──────────────────────────────────────────
    rgb_img = image.convert("RGB")
    width_px, height_px = rgb_img.size
    width_pt = width_px * 72 / dpi
    height_pt = height_px * 72 / dpi

    png_buffer = io.BytesIO()
    rgb_img.save(png_buffer, format="PNG", dpi=(dpi, dpi))
    png_buffer.seek(0)

    pdf_buffer = io.BytesIO()
    pdf_canvas = canvas.Canvas(pdf_buffer, pagesize=(width_pt, height_pt))
    pdf_canvas.drawImage(ImageReader(png_buffer), 0, 0, width=width_pt, height=height_pt)
    pdf_canvas.save()

    logger.info(f"Converted {width_px}x{height_px}px image template to PDF ({width_pt:.0f}x{height_pt:.0f}pt)")
    return pdf_buffer.getvalue()
