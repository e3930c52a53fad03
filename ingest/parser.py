"""Parse classico: righe tabellari → candidati, senza servizio di estrazione."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from rapidfuzz import fuzz, process

from ingest.normalization import canonical_token
from ingest.types import CandidateRecord, SourceKind

logger = logging.getLogger(__name__)

COLUMN_SYNONYMS: Dict[str, List[str]] = {
    "name": ["name", "product", "nom", "produit", "designation", "libelle", "article",
             "nome", "prodotto", "articolo", "etichetta", "vin", "vino"],
    "quantity": ["quantity", "qty", "quantite", "qte", "stock", "nombre", "quantita", "qta",
                 "pezzi", "bottiglie"],
    "purchase_price": ["price", "purchase price", "cost", "prix", "prix achat", "prix d achat",
                       "prixachat", "cout", "prezzo", "prezzo acquisto", "costo", "pu", "prix unitaire"],
    "sale_price": ["sale price", "selling price", "prix vente", "prix de vente", "prixvente",
                   "prezzo vendita"],
    "category": ["category", "categorie", "type", "famille", "categoria", "tipologia"],
    "unit": ["unit", "unite", "conditionnement", "format", "unita"],
    "supplier": ["supplier", "fournisseur", "vendor", "distributeur", "fornitore", "distributore"],
    "description": ["description", "descriptif", "notes", "descrizione"],
}

# Layout posizionale quando manca l'intestazione: nome, quantità, prezzo, categoria, fornitore
POSITIONAL_COLUMNS: Dict[str, int] = {
    "name": 0,
    "quantity": 1,
    "purchase_price": 2,
    "category": 3,
    "supplier": 4,
    "description": 5,
}

# Header sintetico delle righe ricavate da testo/OCR
SYNTHESIZED_HEADER = ["name", "quantity", "purchase_price", "unit"]

_TARGETS: List[str] = []
_TARGET_TO_FIELD: Dict[str, str] = {}
for _field, _variants in COLUMN_SYNONYMS.items():
    for _variant in [_field, *_variants]:
        _token = canonical_token(_variant)
        if _token not in _TARGET_TO_FIELD:
            _TARGETS.append(_token)
            _TARGET_TO_FIELD[_token] = _field


def map_header_columns(header: Sequence, score_cutoff: float = 80.0) -> Dict[str, int]:
    """
    Mappa le colonne di intestazione sui campi candidato con rapidfuzz.

    Ogni campo viene assegnato alla colonna con il punteggio più alto;
    una colonna non può coprire due campi.

    Returns:
        Dict {campo: indice colonna}
    """
    scored = []
    for idx, column in enumerate(header):
        token = canonical_token(column or "")
        if not token:
            continue
        result = process.extractOne(token, _TARGETS, scorer=fuzz.ratio, score_cutoff=score_cutoff)
        if result:
            matched, score, _ = result
            scored.append((score, idx, _TARGET_TO_FIELD[matched]))

    mapping: Dict[str, int] = {}
    used_columns = set()
    for score, idx, field_name in sorted(scored, key=lambda x: -x[0]):
        if field_name in mapping or idx in used_columns:
            continue
        mapping[field_name] = idx
        used_columns.add(idx)
        logger.debug(f"[PARSER] Colonna {idx} '{header[idx]}' -> {field_name} (score={score:.0f})")

    logger.info(f"[PARSER] Header mapping: {len(mapping)}/{len(header)} colonne mappate")
    return mapping


def resolve_column_map(header: Optional[Sequence]) -> Dict[str, int]:
    """Mapping da intestazione se utilizzabile (serve almeno il nome), altrimenti posizionale."""
    if header:
        mapping = map_header_columns(header)
        if "name" in mapping:
            return mapping
        logger.warning("[PARSER] Intestazione senza colonna nome, uso layout posizionale")
    return dict(POSITIONAL_COLUMNS)


def _cell(row: Sequence, idx: Optional[int]):
    if idx is None or idx >= len(row):
        return None
    value = row[idx]
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def candidate_from_row(
    row: Sequence,
    column_map: Dict[str, int],
    document_id: Optional[str],
    confidence: Optional[float],
    source: SourceKind = "file",
) -> Optional[CandidateRecord]:
    """
    Costruisce un candidato grezzo da una riga.

    Returns:
        CandidateRecord non normalizzato, None per righe senza nome
    """
    name = _cell(row, column_map.get("name"))
    if not name:
        return None

    return CandidateRecord(
        source_document_id=document_id,
        name=name,
        category=_cell(row, column_map.get("category")),
        quantity=_cell(row, column_map.get("quantity")),
        unit=_cell(row, column_map.get("unit")),
        purchase_price=_cell(row, column_map.get("purchase_price")),
        sale_price=_cell(row, column_map.get("sale_price")),
        supplier=_cell(row, column_map.get("supplier")),
        description=_cell(row, column_map.get("description")),
        confidence=confidence,
        source=source,
    )


def candidates_from_rows(
    rows: List[List[str]],
    header: Optional[Sequence],
    document_id: Optional[str],
    confidence: Optional[float],
    source: SourceKind = "file",
) -> List[CandidateRecord]:
    column_map = resolve_column_map(header)
    candidates = []
    for row in rows:
        candidate = candidate_from_row(row, column_map, document_id, confidence, source)
        if candidate is not None:
            candidates.append(candidate)
    logger.info(f"[PARSER] {len(candidates)} candidati da {len(rows)} righe (parse classico)")
    return candidates
