"""
Reader - Lettura documento in righe grezze o testo.

Fogli di calcolo e file delimitati producono righe direttamente.
PDF e immagini passano dall'adapter OCR; il testo ottenuto viene scansionato
riga per riga per sintetizzare righe (euristica a bassa precisione).
"""
import asyncio
import logging
import re
import time
from typing import List, Optional, Protocol

from ingest.csv_parser import detect_encoding, parse_csv
from ingest.errors import ExtractionUnavailable
from ingest.excel_parser import parse_excel
from ingest.gate import require_kind, split_header
from ingest.ocr_extract import OcrResult
from ingest.parser import SYNTHESIZED_HEADER
from ingest.types import RawDocument, ReadResult

logger = logging.getLogger(__name__)


class TextExtractor(Protocol):
    async def extract(self, content: bytes) -> OcrResult:
        ...


_UNIT_WORDS = (
    r"bouteilles?|btl|bottles?|bottiglie|bottiglia|litres?|liters?|litri|cl|l"
    r"|canettes?|cans?|lattine|pi[eè]ces?|pcs?|pz|unit[ée]s?|units?"
)

# <nome> <intero><unità>? <decimale>(valuta)? eventualmente "/unité"
LINE_PATTERN = re.compile(
    r"^\s*(?P<name>[^,;]+?)[\s:;,\-]+"
    r"(?P<quantity>\d+)\s*(?:(?P<unit>" + _UNIT_WORDS + r")\b)?"
    r"[\s:;,x×@\-]+"
    r"(?P<price>\d+(?:[.,]\d+)?)\s*(?:euros?|eur|€)?"
    r"(?:\s*/\s*\w+)?\s*$",
    re.IGNORECASE,
)


def synthesize_rows(text: str) -> List[List[str]]:
    """
    Estrae righe [nome, quantità, prezzo, unità] da testo libero.

    Le righe che non rispettano il pattern vengono ignorate.
    """
    rows = []
    for line in text.splitlines():
        if not line.strip():
            continue
        match = LINE_PATTERN.match(line)
        if not match:
            continue
        rows.append([
            match.group('name').strip(),
            match.group('quantity'),
            match.group('price'),
            match.group('unit') or '',
        ])
    return rows


def _metadata(rows: List[List[str]], has_header_row: bool, /, **extra) -> dict:
    metadata = {
        'row_count': len(rows),
        'column_count': max((len(r) for r in rows), default=0),
        'has_header_row': has_header_row,
    }
    metadata.update(extra)
    return metadata


def read_text(text: str, document_id: str, file_name: str = "text-input", **extra) -> ReadResult:
    """Sintetizza righe da testo libero (input testuale o output OCR)."""
    rows = synthesize_rows(text)
    logger.info(f"[READER] {file_name}: {len(rows)} righe sintetizzate da testo")
    return ReadResult(
        document_id=document_id,
        file_name=file_name,
        kind='text',
        rows=rows,
        metadata=_metadata(rows, False, **extra),
        text=text,
        header=list(SYNTHESIZED_HEADER),
    )


async def read_document(
    document: RawDocument,
    text_extractor: Optional[TextExtractor] = None,
) -> ReadResult:
    """
    Legge un documento secondo il suo tipo.

    Args:
        document: Documento caricato
        text_extractor: Adapter OCR per PDF/immagini

    Returns:
        ReadResult con righe, metadata e (per OCR/testo) il testo grezzo

    Raises:
        UnsupportedFormat: tipo non riconosciuto
        ExtractionUnavailable: OCR non disponibile o senza testo
        ValueError: file tabellare illeggibile
    """
    start_time = time.time()
    kind = require_kind(document.file_name, document.mime_hint)

    if kind in ('spreadsheet', 'delimited'):
        if kind == 'spreadsheet':
            all_rows, info = await asyncio.to_thread(parse_excel, document.content)
        else:
            all_rows, info = await asyncio.to_thread(parse_csv, document.content)
        header, rows = split_header(all_rows)
        result = ReadResult(
            document_id=document.id,
            file_name=document.file_name,
            kind=kind,
            rows=rows,
            metadata=_metadata(rows, header is not None, **info),
            header=header,
        )

    elif kind == 'text':
        encoding, _ = detect_encoding(document.content)
        text = document.content.decode(encoding, errors='ignore')
        result = read_text(text, document.id, document.file_name)

    else:
        if text_extractor is None:
            raise ExtractionUnavailable(
                f"OCR non configurato per {document.file_name}",
                details={"file_name": document.file_name, "kind": kind},
            )
        ocr = await text_extractor.extract(document.content)
        result = read_text(
            ocr.text,
            document.id,
            document.file_name,
            ocr_confidence=ocr.confidence,
            pages=ocr.pages,
        )
        result.kind = kind

    logger.info(
        f"[READER] {document.file_name} letto: kind={kind}, "
        f"rows={result.metadata['row_count']}, header={result.metadata['has_header_row']}, "
        f"elapsed={time.time() - start_time:.2f}s"
    )
    return result
