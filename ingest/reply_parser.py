"""
Parsing risposte del servizio di estrazione.

Le risposte sono testo libero che "dovrebbe" contenere JSON. Il parsing
procede a livelli e non solleva mai eccezioni:

1. rimozione code fence, taglio prima del primo [ / { e dopo la chiusura
   corrispondente, poi ricerca del primo array/oggetto bilanciato
2. pulizia (caratteri di controllo, virgole finali, chiavi senza virgolette)
3. un oggetto isolato viene incapsulato in una lista
4. fallback regex riga per riga con confidenza bassa
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from ingest.errors import MalformedExtractionReply
from ingest.reader import LINE_PATTERN
from ingest.types import ParseOutcome

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 50

_FENCE = re.compile(r"```(?:json|JSON)?")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]+")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_]\w*)\s*:")

# Chiavi contenitore usate dai modelli quando restituiscono un oggetto
_LIST_KEYS = ("products", "items", "records", "produits", "prodotti", "data")

# "<nome>: <intero> ... <decimale>"
_FALLBACK_LINE = re.compile(
    r"^[\s\-*•]*(?P<name>[^:\n{}\[\]\"]+?)\s*:\s*"
    r"(?P<quantity>\d+)\b[^\d\n]*?"
    r"(?P<price>\d+(?:[.,]\d+)?)",
)


def _matching_close(text: str, start: int) -> Optional[int]:
    """Indice della parentesi che chiude quella in text[start], ignorando le stringhe."""
    opener = text[start]
    closer = ']' if opener == '[' else '}'
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return idx
    return None


def _first_balanced(text: str, opener: str) -> Optional[str]:
    start = text.find(opener)
    while start != -1:
        end = _matching_close(text, start)
        if end is not None:
            return text[start:end + 1]
        start = text.find(opener, start + 1)
    return None


def _trim_outer(text: str) -> Optional[str]:
    """Taglia prima del primo [ o { e dopo la chiusura corrispondente (o l'ultima chiusura)."""
    match = re.search(r"[\[{]", text)
    if not match:
        return None
    start = match.start()
    end = _matching_close(text, start)
    if end is None:
        last_close = max(text.rfind(']'), text.rfind('}'))
        if last_close <= start:
            return text[start:]
        end = last_close
    return text[start:end + 1]


def repair_json(text: str) -> str:
    """Pulizia best-effort di JSON quasi valido."""
    cleaned = _CONTROL_CHARS.sub(' ', text)
    cleaned = _TRAILING_COMMA.sub(r'\1', cleaned)
    cleaned = _BARE_KEY.sub(r'\1"\2":', cleaned)
    return cleaned.strip()


def _as_records(parsed: Any) -> List[Dict[str, Any]]:
    if isinstance(parsed, dict):
        for key in _LIST_KEYS:
            value = parsed.get(key)
            if isinstance(value, list):
                parsed = value
                break
        else:
            return [parsed]
    if isinstance(parsed, list):
        return [item for item in parsed if isinstance(item, dict)]
    raise MalformedExtractionReply(f"JSON senza record: {type(parsed).__name__}")


def parse_json_reply(text: str) -> List[Dict[str, Any]]:
    """
    Livelli JSON (1-3).

    Raises:
        MalformedExtractionReply: nessun frammento JSON utilizzabile
    """
    unfenced = _FENCE.sub('', text).strip()

    fragments: List[str] = []
    for fragment in (_trim_outer(unfenced), _first_balanced(unfenced, '['), _first_balanced(unfenced, '{')):
        if fragment and fragment not in fragments:
            fragments.append(fragment)

    if not fragments:
        raise MalformedExtractionReply("Nessun JSON nella risposta")

    last_error = None
    for fragment in fragments:
        for attempt in (fragment, repair_json(fragment)):
            try:
                return _as_records(json.loads(attempt))
            except (json.JSONDecodeError, MalformedExtractionReply) as e:
                last_error = e
    raise MalformedExtractionReply(f"JSON non recuperabile: {last_error}")


def fallback_records(text: str, confidence: float = FALLBACK_CONFIDENCE) -> List[Dict[str, Any]]:
    """Estrazione di secours riga per riga: nome, quantità, prezzo."""
    records = []
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _FALLBACK_LINE.match(line) or LINE_PATTERN.match(line)
        if not match:
            continue
        name = match.group('name').strip()
        if len(name) < 2:
            continue
        record = {
            'name': name,
            'quantity': int(match.group('quantity')),
            'purchase_price': float(match.group('price').replace(',', '.')),
            'confidence': confidence,
        }
        unit = match.groupdict().get('unit')
        if unit:
            record['unit'] = unit
        records.append(record)
    return records


def parse_reply(text: Optional[str], fallback_confidence: float = FALLBACK_CONFIDENCE) -> ParseOutcome:
    """
    Converte la risposta del servizio in record grezzi.

    Args:
        text: Risposta testuale del servizio
        fallback_confidence: Confidenza dei record estratti dal fallback

    Returns:
        ParseOutcome parsed / fallback_parsed / unrecoverable (mai eccezioni)
    """
    if not text or not text.strip():
        return ParseOutcome(status="unrecoverable", error="Risposta vuota")

    try:
        records = parse_json_reply(text)
        logger.debug(f"[REPLY_PARSER] JSON parsato: {len(records)} record")
        return ParseOutcome(status="parsed", records=records)
    except MalformedExtractionReply as e:
        logger.warning(f"[REPLY_PARSER] {e.message}, tentativo estrazione di secours")
        json_error = e.message

    records = fallback_records(text, fallback_confidence)
    if records:
        logger.info(f"[REPLY_PARSER] Estrazione di secours: {len(records)} record")
        return ParseOutcome(status="fallback_parsed", records=records, error=json_error)

    logger.error(f"[REPLY_PARSER] Risposta irrecuperabile: {text[:200]!r}")
    return ParseOutcome(status="unrecoverable", error=json_error)
