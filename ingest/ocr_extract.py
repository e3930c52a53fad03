"""
OCR Extract - Estrazione testo da PDF/immagini.

Usa pytesseract (+ pdf2image per PDF). Il motore OCR è un confine esterno:
qui interessa solo il contratto extract(bytes) -> OcrResult, o
ExtractionUnavailable se non si ottiene testo.
"""
import asyncio
import io
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import pytesseract
from pdf2image import convert_from_bytes
from PIL import Image

from core.config import get_config
from ingest.errors import ExtractionUnavailable

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    text: str
    confidence: float  # 0.0 - 1.0
    pages: int = 1


def _is_pdf(content: bytes) -> bool:
    return content[:5] == b'%PDF-'


def image_to_lines(image: Image.Image, lang: str) -> Tuple[str, List[float]]:
    """
    OCR di una singola immagine.

    Ricostruisce le righe dai dati parola per parola di Tesseract e
    raccoglie le confidenze (scartando i -1 dei blocchi senza testo).

    Returns:
        Tuple (testo, confidenze parola 0-100)
    """
    if image.mode != 'RGB':
        image = image.convert('RGB')

    data = pytesseract.image_to_data(image, lang=lang, output_type=pytesseract.Output.DICT)

    lines = {}
    confidences: List[float] = []
    for idx, word in enumerate(data.get('text', [])):
        if not word or not str(word).strip():
            continue
        key = (data['block_num'][idx], data['par_num'][idx], data['line_num'][idx])
        lines.setdefault(key, []).append(str(word).strip())
        try:
            conf = float(data['conf'][idx])
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confidences.append(conf)

    text = '\n'.join(' '.join(words) for _, words in sorted(lines.items()))
    return text, confidences


class TesseractTextExtractor:
    """Adapter OCR basato su Tesseract."""

    def __init__(self, lang: Optional[str] = None, enabled: Optional[bool] = None):
        config = get_config()
        self.lang = lang or config.ocr_lang
        self.enabled = config.ocr_enabled if enabled is None else enabled

    def extract_sync(self, content: bytes) -> OcrResult:
        if not self.enabled:
            raise ExtractionUnavailable("OCR disabilitato (OCR_ENABLED=false)")

        start_time = time.time()
        try:
            if _is_pdf(content):
                images = convert_from_bytes(content)
                logger.info(f"[OCR] PDF converted to {len(images)} images")
            else:
                images = [Image.open(io.BytesIO(content))]
        except Exception as e:
            logger.error(f"[OCR] Impossibile aprire il documento: {e}")
            raise ExtractionUnavailable(f"Documento non leggibile per OCR: {e}") from e

        page_texts = []
        confidences: List[float] = []
        for page_idx, image in enumerate(images):
            try:
                page_text, page_conf = image_to_lines(image, self.lang)
            except Exception as e:
                logger.warning(f"[OCR] Error processing page {page_idx + 1}: {e}")
                continue
            page_texts.append(page_text)
            confidences.extend(page_conf)

        full_text = '\n\n'.join(t for t in page_texts if t.strip())
        if not full_text.strip():
            raise ExtractionUnavailable(
                "Nessun testo estratto da OCR",
                details={"pages": len(images)},
            )

        confidence = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
        confidence = max(0.0, min(1.0, confidence))

        logger.info(
            f"[OCR] OCR extracted {len(full_text)} characters from {len(images)} page(s), "
            f"confidence={confidence:.2f}, elapsed={time.time() - start_time:.2f}s"
        )
        return OcrResult(text=full_text, confidence=confidence, pages=len(images))

    async def extract(self, content: bytes) -> OcrResult:
        """Esegue l'OCR in un thread per non bloccare l'event loop."""
        return await asyncio.to_thread(self.extract_sync, content)
