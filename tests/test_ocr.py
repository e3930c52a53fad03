"""
Test unitari per adapter OCR con mock pytesseract.
"""
import io
from unittest.mock import patch

import pytest
from PIL import Image

from ingest.errors import ExtractionUnavailable
from ingest.ocr_extract import TesseractTextExtractor, image_to_lines


def _png_bytes():
    img = Image.new('RGB', (100, 100), color='white')
    img_bytes = io.BytesIO()
    img.save(img_bytes, format='PNG')
    return img_bytes.getvalue()


def _tesseract_data(words, confs, lines):
    return {
        'text': words,
        'conf': confs,
        'block_num': [1] * len(words),
        'par_num': [1] * len(words),
        'line_num': lines,
    }


TICKET_DATA = _tesseract_data(
    ["Chianti", "Classico", "12", "18.50", "", "Heineken", "24", "1.20"],
    [90, 88, 95, 91, -1, 70, 80, 75],
    [1, 1, 1, 1, 1, 2, 2, 2],
)


class TestImageToLines:
    """Test per ricostruzione righe."""

    def test_lines_and_confidences(self):
        image = Image.new('L', (10, 10))
        with patch('ingest.ocr_extract.pytesseract.image_to_data', return_value=TICKET_DATA):
            text, confidences = image_to_lines(image, 'fra')

        assert text == "Chianti Classico 12 18.50\nHeineken 24 1.20"
        assert -1 not in confidences
        assert len(confidences) == 7


class TestTesseractTextExtractor:
    """Test per TesseractTextExtractor."""

    @pytest.mark.asyncio
    async def test_image(self):
        extractor = TesseractTextExtractor(lang='fra', enabled=True)
        with patch('ingest.ocr_extract.pytesseract.image_to_data', return_value=TICKET_DATA) as mock_ocr:
            result = await extractor.extract(_png_bytes())

        assert "Heineken 24 1.20" in result.text
        assert result.pages == 1
        assert result.confidence == pytest.approx(sum([90, 88, 95, 91, 70, 80, 75]) / 7 / 100)
        mock_ocr.assert_called_once()

    def test_pdf_pages(self):
        extractor = TesseractTextExtractor(lang='fra', enabled=True)
        pages = [Image.new('RGB', (10, 10)), Image.new('RGB', (10, 10))]
        with patch('ingest.ocr_extract.convert_from_bytes', return_value=pages), \
                patch('ingest.ocr_extract.pytesseract.image_to_data', return_value=TICKET_DATA):
            result = extractor.extract_sync(b"%PDF-1.4 fake")

        assert result.pages == 2
        assert result.text.count("Chianti Classico") == 2

    def test_disabled(self):
        extractor = TesseractTextExtractor(enabled=False)
        with pytest.raises(ExtractionUnavailable, match="OCR disabilitato"):
            extractor.extract_sync(_png_bytes())

    def test_no_text(self):
        extractor = TesseractTextExtractor(lang='fra', enabled=True)
        empty = _tesseract_data(["", " "], [-1, -1], [1, 1])
        with patch('ingest.ocr_extract.pytesseract.image_to_data', return_value=empty):
            with pytest.raises(ExtractionUnavailable, match="Nessun testo"):
                extractor.extract_sync(_png_bytes())

    def test_invalid_image(self):
        extractor = TesseractTextExtractor(lang='fra', enabled=True)
        with pytest.raises(ExtractionUnavailable, match="non leggibile"):
            extractor.extract_sync(b"invalid image data")
