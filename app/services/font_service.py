"""
services/font_service.py
Resolves certificate fonts and auto-sizes text for reportlab.
"""
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont

from app.core.config import settings
from app.models.template_model import FontWeight
from app.utils.helpers import get_logger

logger = get_logger(__name__)

# Standard PDF fonts, always available without embedding
STANDARD_FONTS: dict[str, dict[str, str]] = {
    "Helvetica": {
        FontWeight.NORMAL.value: "Helvetica",
        FontWeight.BOLD.value: "Helvetica-Bold",
        FontWeight.ITALIC.value: "Helvetica-Oblique",
        FontWeight.BOLD_ITALIC.value: "Helvetica-BoldOblique",
    },
    "Times": {
        FontWeight.NORMAL.value: "Times-Roman",
        FontWeight.BOLD.value: "Times-Bold",
        FontWeight.ITALIC.value: "Times-Italic",
        FontWeight.BOLD_ITALIC.value: "Times-BoldItalic",
    },
    "Courier": {
        FontWeight.NORMAL.value: "Courier",
        FontWeight.BOLD.value: "Courier-Bold",
        FontWeight.ITALIC.value: "Courier-Oblique",
        FontWeight.BOLD_ITALIC.value: "Courier-BoldOblique",
    },
}

# TTF file suffixes tried for custom families, best match first
TTF_VARIANTS: dict[str, tuple[str, ...]] = {
    FontWeight.NORMAL.value: ("Regular",),
    FontWeight.BOLD.value: ("Bold", "Regular"),
    FontWeight.ITALIC.value: ("Italic", "Regular"),
    FontWeight.BOLD_ITALIC.value: ("BoldItalic", "Bold", "Regular"),
}


def _standard_font(family: str, weight: str) -> str:
    variants = STANDARD_FONTS.get(family, STANDARD_FONTS["Helvetica"])
    return variants.get(weight, variants[FontWeight.NORMAL.value])


def _load_ttf(font_name: str) -> bool:
    """Register <FONTS_DIR>/<font_name>.ttf with reportlab if it exists."""
    if font_name in pdfmetrics.getRegisteredFontNames():
        return True
    path = settings.FONTS_DIR / f"{font_name}.ttf"
    if not path.exists():
        return False
    try:
        pdfmetrics.registerFont(TTFont(font_name, str(path)))
    except TTFError as e:
        logger.error(f"Could not load font {path}: {e}")
        return False
    logger.info(f"Registered font {font_name} from {path}")
    return True


def resolve_font(family: str, weight: str = FontWeight.NORMAL.value) -> str:
    """
    Return a reportlab font name for the family and weight.

    Helvetica, Times and Courier map to the standard PDF fonts. Any other
    family is looked up as a TTF file in the fonts directory; when none is
    found the Helvetica variant of the same weight is used.
    """
    if family in STANDARD_FONTS:
        return _standard_font(family, weight)

    for variant in TTF_VARIANTS.get(weight, TTF_VARIANTS[FontWeight.NORMAL.value]):
        font_name = f"{family}-{variant}"
        if _load_ttf(font_name):
            return font_name

    logger.warning(f"Font '{family}' ({weight}) not available, falling back to Helvetica.")
    return _standard_font("Helvetica", weight)


def text_width(text: str, font_name: str, font_size: float) -> float:
    return pdfmetrics.stringWidth(text, font_name, font_size)


def fit_font_size(text: str, font_name: str, font_size: float, max_width: float | None) -> float:
    """
    Shrink font_size in 2pt steps until text fits within max_width.

    Never goes below MIN_FONT_SIZE, and never above the configured size.
    """
    if not max_width or max_width <= 0:
        return font_size
    if text_width(text, font_name, font_size) <= max_width:
        return font_size

    size = font_size - 2
    while size >= settings.MIN_FONT_SIZE:
        if text_width(text, font_name, size) <= max_width:
            return size
        size -= 2

    smallest = min(font_size, settings.MIN_FONT_SIZE)
    logger.warning(f"Text '{text}' too long; using minimum font size {smallest}")
    return float(smallest)
