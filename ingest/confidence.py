"""
Confidence Gate.

- preview: nessun filtro, i candidati sotto soglia vengono solo segnalati
- automatic: i candidati sotto soglia sono esclusi dal commit; se nessuno
  supera la soglia l'intera sessione fallisce
"""
from __future__ import annotations

import logging
from typing import List, Tuple

from ingest.errors import InsufficientConfidence
from ingest.types import CandidateRecord, GateMode

logger = logging.getLogger(__name__)


def flag_low_confidence(candidates: List[CandidateRecord], threshold: float) -> int:
    flagged = 0
    for candidate in candidates:
        candidate.low_confidence = (candidate.confidence or 0.0) < threshold
        if candidate.low_confidence:
            flagged += 1
    return flagged


def apply_gate(
    candidates: List[CandidateRecord],
    mode: GateMode,
    threshold: float,
) -> Tuple[List[CandidateRecord], List[CandidateRecord]]:
    """
    Applica la soglia di confidenza.

    Args:
        candidates: Candidati normalizzati
        mode: 'preview' o 'automatic'
        threshold: Confidenza minima (0-100), inclusa

    Returns:
        Tuple (accettati, esclusi); in preview gli esclusi sono sempre vuoti

    Raises:
        InsufficientConfidence: modalità automatica senza candidati sopra soglia
    """
    flagged = flag_low_confidence(candidates, threshold)

    if mode == "preview":
        logger.info(f"[GATE] Preview: {len(candidates)} candidati, {flagged} da verificare (< {threshold:g})")
        return list(candidates), []

    accepted = [c for c in candidates if not c.low_confidence]
    excluded = [c for c in candidates if c.low_confidence]
    if not accepted:
        logger.warning(f"[GATE] Automatico: nessun candidato >= {threshold:g} su {len(candidates)}")
        raise InsufficientConfidence(threshold, len(candidates))

    logger.info(
        f"[GATE] Automatico: {len(accepted)} accettati, {len(excluded)} esclusi (soglia {threshold:g})"
    )
    return accepted, excluded


def split_committable(candidates: List[CandidateRecord]) -> Tuple[List[CandidateRecord], List[CandidateRecord]]:
    """
    Separa i candidati scrivibili da quelli bloccati al commit di una preview.

    Un errore di validazione è solo un'annotazione, tranne quando il
    candidato è anche sotto soglia: in quel caso non viene scritto.

    Returns:
        Tuple (scrivibili, bloccati)
    """
    committable = [c for c in candidates if not (c.validation_errors and c.low_confidence)]
    blocked = [c for c in candidates if c.validation_errors and c.low_confidence]
    if blocked:
        logger.info(f"[GATE] Commit preview: {len(blocked)} candidati bloccati (errori + confidenza bassa)")
    return committable, blocked
