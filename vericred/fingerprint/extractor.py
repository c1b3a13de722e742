"""Document fingerprinting: binary content hash plus an optional text hash.

The binary hash alone misses the common case of the same marksheet being
re-saved or re-photographed. When text can be pulled out of the document
(PDF text layer, plain text, or OCR when enabled) a hash of the normalized
text is produced as well. Extraction failures never propagate: they are
logged and the fingerprint simply carries no text hash.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Callable

import fitz  # PyMuPDF
import pytesseract
from PIL import Image, UnidentifiedImageError

from vericred.models import DocumentFingerprint
from vericred.normalization import normalize_text
from vericred.settings import VeriCredSettings, get_config
from vericred.utils import ExtractionDegraded, InvalidInput, compute_sha256, compute_string_hash

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = frozenset({"pdf"})
TEXT_EXTENSIONS = frozenset({"txt", "csv", "md", "text"})
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "tif", "tiff", "bmp", "webp"})

# Rendering resolution for OCR of PDFs without a text layer
_PDF_RENDER_DPI = 200


def digest_bytes(data: bytes) -> str:
    """Prefixed SHA-256 of raw document bytes."""
    return compute_sha256(data)


def digest_text(text: str) -> str | None:
    """Prefixed SHA-256 of normalized text, or None when nothing is left."""
    normalized = normalize_text(text)
    if not normalized:
        return None
    return compute_string_hash(normalized)


def file_extension(filename: str | None) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


# ---------------------------------------------------------------------------
# Text extraction back-ends
# ---------------------------------------------------------------------------

def _ocr_image_bytes(data: bytes, cfg: VeriCredSettings) -> str:
    if cfg.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = cfg.tesseract_cmd
    try:
        with Image.open(io.BytesIO(data)) as img:
            return pytesseract.image_to_string(
                img.convert("RGB"),
                lang=cfg.ocr_lang,
                timeout=cfg.ocr_timeout,
            )
    except (UnidentifiedImageError, pytesseract.TesseractError, RuntimeError, OSError) as exc:
        # pytesseract raises RuntimeError when the timeout elapses
        raise ExtractionDegraded(f"OCR failed: {exc}") from exc


def _extract_image(data: bytes, cfg: VeriCredSettings) -> str:
    if not cfg.ocr_enabled:
        logger.debug("OCR disabled; skipping image text extraction")
        return ""
    return _ocr_image_bytes(data, cfg)


def _extract_pdf(data: bytes, cfg: VeriCredSettings) -> str:
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text("text") for page in doc]
            text = "\n".join(p for p in pages if p.strip())
            if text.strip() or not cfg.ocr_enabled:
                return text

            # Scanned PDF: no text layer, recognize rendered pages instead
            logger.info("PDF has no text layer; running OCR on %d page(s)", len(doc))
            recognized = []
            for page in doc:
                png = page.get_pixmap(dpi=_PDF_RENDER_DPI).tobytes("png")
                recognized.append(_ocr_image_bytes(png, cfg))
            return "\n".join(recognized)
    except (RuntimeError, ValueError) as exc:
        raise ExtractionDegraded(f"PDF parsing failed: {exc}") from exc


def _extract_plain(data: bytes, cfg: VeriCredSettings) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


_EXTRACTORS: dict[frozenset[str], Callable[[bytes, VeriCredSettings], str]] = {
    PDF_EXTENSIONS: _extract_pdf,
    TEXT_EXTENSIONS: _extract_plain,
    IMAGE_EXTENSIONS: _extract_image,
}


def _extractor_for(filename: str | None) -> Callable[[bytes, VeriCredSettings], str] | None:
    ext = file_extension(filename)
    for extensions, extractor in _EXTRACTORS.items():
        if ext in extensions:
            return extractor
    return None


def extract_text(
    data: bytes,
    filename: str | None,
    settings: VeriCredSettings | None = None,
) -> str | None:
    """Best-effort text extraction. Returns None when no text was obtained."""
    cfg = settings or get_config()
    extractor = _extractor_for(filename)
    if extractor is None:
        logger.debug("No text extractor for %r", filename)
        return None
    try:
        text = extractor(data, cfg)
    except ExtractionDegraded as exc:
        logger.warning("Text extraction degraded for %s: %s", filename, exc)
        return None
    return text if text and text.strip() else None


def fingerprint(
    data: bytes,
    filename: str | None = None,
    settings: VeriCredSettings | None = None,
    text: str | None = None,
) -> DocumentFingerprint:
    """Compute the fingerprint of a document payload.

    ``text`` may be passed when the caller already extracted it, to avoid a
    second OCR pass.
    """
    if not data:
        raise InvalidInput("Document payload is empty")

    if text is None:
        text = extract_text(data, filename, settings)

    fp = DocumentFingerprint(
        binary_hash=digest_bytes(data),
        text_hash=digest_text(text) if text else None,
        source_name=filename or "",
    )
    logger.debug(
        "Fingerprinted %s: binary=%s text=%s",
        fp.source_name or "<payload>", fp.binary_hash, fp.text_hash,
    )
    return fp
