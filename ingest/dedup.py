from __future__ import annotations

import logging
import re
import unicodedata
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from ingest.types import CandidateRecord, InventoryItem, InventorySnapshot

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8

# Abbreviazioni comuni nelle etichette, espanse prima del confronto fuzzy
_ABBREVIATIONS = {
    "1er": "premier",
    "1ere": "premiere",
    "gd": "grand",
    "gds": "grands",
    "st": "saint",
    "ste": "sainte",
    "ch": "chateau",
    "chat": "chateau",
    "dom": "domaine",
}


def _normalize_token(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value.lower())
    normalized = "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")
    normalized = re.sub(r"[^a-z0-9 ]", " ", normalized)
    words = [_ABBREVIATIONS.get(word, word) for word in normalized.split()]
    return " ".join(words)


def levenshtein_similarity(first: str, second: str) -> float:
    """(max(len) - distanza di edit) / max(len) sulle forme normalizzate, in [0, 1]."""
    a = _normalize_token(first or "")
    b = _normalize_token(second or "")
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - Levenshtein.distance(a, b)) / longest


def _exact_key(name: str) -> str:
    return (name or "").strip().lower()


def find_duplicate(
    candidate: CandidateRecord,
    snapshot: InventorySnapshot,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Optional[InventoryItem]:
    """
    Cerca il prodotto di inventario corrispondente a un candidato.

    Prima passata: nome identico (case-insensitive, trim) su tutto l'inventario.
    Seconda passata: similarità > threshold contro i prodotti della stessa
    categoria; vince il primo che supera la soglia.
    """
    key = _exact_key(candidate.name)
    for item in snapshot.items:
        if _exact_key(item.name) == key:
            return item

    for item in snapshot.items:
        if item.category != candidate.category:
            continue
        if levenshtein_similarity(candidate.name, item.name) > threshold:
            return item
    return None


def resolve_duplicates(
    candidates: List[CandidateRecord],
    snapshot: InventorySnapshot,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> List[CandidateRecord]:
    matched = 0
    for candidate in candidates:
        item = find_duplicate(candidate, snapshot, threshold)
        if item is None:
            candidate.is_new = True
            candidate.matched_inventory_id = None
        else:
            candidate.is_new = False
            candidate.matched_inventory_id = item.id
            matched += 1
            logger.debug(f"[DEDUP] '{candidate.name}' -> inventario '{item.name}' ({item.id})")

    logger.info(
        f"[DEDUP] {len(candidates)} candidati confrontati con {len(snapshot.items)} prodotti: "
        f"{matched} esistenti, {len(candidates) - matched} nuovi"
    )
    return candidates
