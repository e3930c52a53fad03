"""
Lettura di documenti delimitati (CSV/TSV/TXT tabellari).

Le righe vengono restituite così come sono, senza interpretare l'intestazione:
il riconoscimento dell'header avviene a valle sulla riga 0.
"""
import csv
import io
import logging
from typing import Any, Dict, List, Optional, Tuple

import chardet
import pandas as pd

logger = logging.getLogger(__name__)

DELIMITERS = (';', ',', '\t', '|')

# Provati in ordine dopo il suggerimento di chardet
_FALLBACK_ENCODINGS = ('cp1252', 'latin-1')


def detect_encoding(file_content: bytes) -> Tuple[str, float]:
    """
    Encoding del documento.

    utf-8 (con o senza BOM) ha la precedenza; poi il suggerimento di chardet
    sui primi 10KB, infine cp1252/latin-1.

    Returns:
        Tuple (encoding, confidenza chardet)
    """
    guess = chardet.detect(file_content[:10000])
    confidence = guess.get('confidence') or 0.0

    encodings = ['utf-8-sig', 'utf-8']
    if guess.get('encoding'):
        encodings.append(guess['encoding'])
    encodings.extend(_FALLBACK_ENCODINGS)

    for encoding in encodings:
        try:
            file_content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
        return encoding, confidence
    return 'utf-8', 0.0


def _delimiter_score(lines: List[str], delimiter: str) -> int:
    counts = [line.count(delimiter) for line in lines]
    if not counts or min(counts) == 0:
        return 0
    # colonne costanti su tutte le righe valgono doppio
    return sum(counts) * (2 if len(set(counts)) == 1 else 1)


def detect_delimiter(file_content: bytes, encoding: str, sample_lines: int = 10) -> str:
    """
    Separatore più probabile tra ; , tab e |.

    csv.Sniffer sulle prime righe, altrimenti il separatore presente su tutte
    le righe campione con il conteggio più regolare.
    """
    text = file_content.decode(encoding, errors='ignore')
    lines = [line for line in text.splitlines()[:sample_lines] if line.strip()]
    if not lines:
        return ','

    try:
        return csv.Sniffer().sniff('\n'.join(lines[:3]), delimiters=''.join(DELIMITERS)).delimiter
    except csv.Error:
        pass

    scores = {delimiter: _delimiter_score(lines, delimiter) for delimiter in DELIMITERS}
    best = max(scores, key=scores.get)
    return best if scores[best] else ','


def frame_to_rows(df: pd.DataFrame) -> List[List[str]]:
    """DataFrame letto come stringhe → righe di celle ripulite ('' per le celle vuote)."""
    df = df.dropna(how='all')
    return [
        ['' if pd.isna(value) else str(value).strip() for value in record]
        for record in df.itertuples(index=False, name=None)
    ]


def parse_csv(
    file_content: bytes,
    separator: Optional[str] = None,
    encoding: Optional[str] = None,
) -> Tuple[List[List[str]], Dict[str, Any]]:
    """
    Legge un documento delimitato.

    Args:
        file_content: Contenuto file
        separator: Separatore forzato (auto-rilevato se None)
        encoding: Encoding forzato (auto-rilevato se None)

    Returns:
        Tuple (righe, info) con info: encoding, encoding_confidence, separator, rows, columns

    Raises:
        ValueError: contenuto non interpretabile come tabella
    """
    encoding_confidence = 1.0
    if encoding is None:
        encoding, encoding_confidence = detect_encoding(file_content)
    separator = separator or detect_delimiter(file_content, encoding)
    info: Dict[str, Any] = {
        'encoding': encoding,
        'encoding_confidence': encoding_confidence,
        'separator': separator,
        'rows': 0,
        'columns': 0,
    }

    try:
        df = pd.read_csv(
            io.BytesIO(file_content),
            sep=separator,
            encoding=encoding,
            encoding_errors='ignore',
            header=None,
            dtype=str,
            engine='python',
            on_bad_lines='skip',
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        logger.warning("[CSV_PARSER] Documento vuoto")
        return [], info
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.error(f"[CSV_PARSER] Errore lettura CSV: {e}")
        raise ValueError(f"Errore parsing CSV: {e}") from e

    rows = frame_to_rows(df)
    info.update(rows=len(rows), columns=len(df.columns))
    logger.info(
        f"[CSV_PARSER] {info['rows']} righe x {info['columns']} colonne "
        f"(encoding={encoding}, separator={separator!r})"
    )
    return rows, info
