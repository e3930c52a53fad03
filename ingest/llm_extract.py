"""
LLM Extract - Estrazione candidati tramite servizio di ragionamento esterno.

Il modello è un confine opaco: interessa solo il contratto
infer(prompt) -> testo. La risposta viene interpretata da reply_parser,
che non fallisce mai; un errore del servizio (timeout, 5xx, credenziali)
diventa ServiceError e fa saltare solo il documento corrente.
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import openai

from core.config import get_config
from core.logger import log_json
from ingest.errors import ServiceError
from ingest.normalization import confidence_to_percent
from ingest.reply_parser import parse_reply
from ingest.types import CATEGORIES, UNITS, CandidateRecord, ParseOutcome, ReadResult, SourceKind

logger = logging.getLogger(__name__)

# Confidenza assegnata ai record senza confidenza esplicita
DEFAULT_CONFIDENCE: Dict[str, float] = {"file": 80.0, "text": 75.0}

# Chiavi accettate nella risposta (inglese, francese, italiano), confrontate
# in minuscolo e senza separatori
KEY_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "nom", "nome", "product", "produit", "prodotto", "designation"),
    "category": ("category", "categorie", "categoria", "type", "tipo"),
    "quantity": ("quantity", "qty", "quantite", "quantita", "qta", "qte"),
    "unit": ("unit", "unite", "unita"),
    "purchase_price": ("purchaseprice", "prixachat", "prezzoacquisto", "price", "prix", "prezzo", "cost"),
    "sale_price": ("saleprice", "sellingprice", "prixvente", "prezzovendita"),
    "supplier": ("supplier", "fournisseur", "fornitore", "vendor"),
    "description": ("description", "descrizione", "notes"),
    "confidence": ("confidence", "confiance", "confidenza"),
}

_ALIAS_TO_FIELD = {alias: field for field, aliases in KEY_ALIASES.items() for alias in aliases}


class ReasoningService(Protocol):
    async def infer(self, prompt: str) -> str:
        ...


class OpenAIReasoningService:
    """Servizio di estrazione basato su OpenAI chat completions."""

    SYSTEM_PROMPT = (
        "Sei un estrattore di inventario bevande. Estrai prodotti da dati tabellari "
        "o testo. Rispondi SOLO con un array JSON."
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        config = get_config()
        api_key = api_key or config.openai_api_key
        if not api_key:
            raise ValueError("OPENAI_API_KEY non configurato")
        self.model = model or config.llm_model_extract
        self.max_tokens = max_tokens or config.llm_max_tokens
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            timeout=timeout or config.llm_timeout_sec,
            max_retries=config.llm_max_retries if max_retries is None else max_retries,
        )

    async def infer(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            logger.error(f"[LLM_EXTRACT] Errore servizio di estrazione: {e}")
            raise ServiceError(
                f"Servizio di estrazione non disponibile: {e}",
                details={"model": self.model, "error_type": type(e).__name__},
            ) from e

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()


def build_prompt(content: str, source: SourceKind = "file") -> str:
    """
    Costruisce l'istruzione di estrazione con lo schema fisso dei campi.

    Args:
        content: Righe serializzate o testo libero
        source: 'file' (righe tabellari) o 'text' (testo libero)
    """
    origin = "righe di un documento di inventario" if source == "file" else "testo libero dell'utente"
    return f"""Analizza le seguenti {origin} ed estrai i prodotti.

Schema JSON di ogni prodotto:
  {{ "name": string, "category": string, "quantity": number>=0, "unit": string,
     "purchase_price": number>=0, "sale_price": number|null, "supplier": string|null,
     "description": string|null, "confidence": number 0-100 }}

Regole:
- "category": una di [{", ".join(CATEGORIES)}].
- "unit": una di [{", ".join(UNITS)}].
- Prezzi in EUR: accetta virgola (es. 8,50 → 8.5).
- "confidence": quanto sei sicuro dell'estrazione della riga (0-100).
- Ignora righe che non siano prodotti (totali, note, sconti).
- Output SOLO JSON (array di oggetti), nessun testo extra.

Dati:
<<<
{content}
>>>
"""


def serialize_rows(rows: List[List[str]]) -> List[str]:
    return [" | ".join(str(cell) for cell in row) for row in rows if any(str(c).strip() for c in row)]


def chunk_lines(lines: List[str], per_chunk: int, header: Optional[List[str]] = None) -> List[str]:
    """Divide le righe in blocchi; l'intestazione viene ripetuta in ogni blocco."""
    header_line = " | ".join(header) if header else None
    chunks = []
    for start in range(0, len(lines), per_chunk):
        block = lines[start:start + per_chunk]
        if header_line:
            block = [header_line] + block
        chunks.append("\n".join(block))
    return chunks


def _alias_key(key: Any) -> str:
    return re.sub(r"[^a-z]", "", str(key).lower())


def record_to_candidate(
    record: Dict[str, Any],
    document_id: Optional[str],
    source: SourceKind = "file",
) -> Optional[CandidateRecord]:
    """Mappa un record della risposta (chiavi in qualsiasi lingua supportata) su un candidato grezzo."""
    values: Dict[str, Any] = {}
    for key, value in record.items():
        field_name = _ALIAS_TO_FIELD.get(_alias_key(key))
        if field_name and field_name not in values:
            values[field_name] = value

    name = values.get("name")
    if name is None or not str(name).strip():
        return None

    return CandidateRecord(
        source_document_id=document_id,
        name=str(name),
        category=values.get("category"),
        quantity=values.get("quantity", 0),
        unit=values.get("unit"),
        purchase_price=values.get("purchase_price", 0),
        sale_price=values.get("sale_price"),
        supplier=values.get("supplier"),
        description=values.get("description"),
        confidence=confidence_to_percent(values.get("confidence", DEFAULT_CONFIDENCE[source])),
        source=source,
    )


async def extract_candidates(
    read_result: ReadResult,
    service: ReasoningService,
    source: SourceKind = "file",
    rows_per_chunk: Optional[int] = None,
) -> Tuple[List[CandidateRecord], List[ParseOutcome]]:
    """
    Estrae candidati da un documento letto.

    Per documenti con testo (OCR, testo libero) viene inviato il testo,
    altrimenti le righe serializzate a blocchi.

    Returns:
        Tuple (candidati grezzi, esiti di parsing per blocco)

    Raises:
        ServiceError: il servizio esterno ha fallito
    """
    start_time = time.time()
    config = get_config()
    per_chunk = rows_per_chunk or config.llm_rows_per_chunk

    if read_result.text is not None:
        chunks = [read_result.text] if read_result.text.strip() else []
    else:
        chunks = chunk_lines(serialize_rows(read_result.rows), per_chunk, read_result.header)

    candidates: List[CandidateRecord] = []
    outcomes: List[ParseOutcome] = []
    for chunk_idx, chunk in enumerate(chunks):
        reply = await service.infer(build_prompt(chunk, source))
        outcome = parse_reply(reply, fallback_confidence=config.fallback_confidence)
        outcomes.append(outcome)

        if outcome.status == "unrecoverable":
            logger.warning(
                f"[LLM_EXTRACT] {read_result.file_name} blocco {chunk_idx + 1}/{len(chunks)}: "
                f"risposta irrecuperabile ({outcome.error})"
            )
            continue

        for record in outcome.records:
            candidate = record_to_candidate(record, read_result.document_id, source)
            if candidate is not None:
                candidates.append(candidate)

    elapsed = time.time() - start_time
    log_json(
        level='info',
        message=f"Estrazione completata: {len(candidates)} candidati da {len(chunks)} blocchi",
        stage='extract',
        file_name=read_result.file_name,
        kind=read_result.kind,
        rows_total=len(read_result.rows),
        candidates=len(candidates),
        elapsed_sec=elapsed,
        outcomes=[o.status for o in outcomes],
    )
    return candidates, outcomes
