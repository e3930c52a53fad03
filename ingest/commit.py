"""
Commit Engine - Scrittura dei candidati accettati nell'inventario.

Non è una transazione unica: ogni candidato è scritto in modo indipendente e
un errore su un candidato lo conta come 'skipped' senza fermare gli altri.
Vale sempre added + updated + skipped == candidati accettati.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Protocol

from ingest.errors import ImportPipelineError, RecordValidationError
from ingest.types import CATEGORIES, UNITS, CandidateRecord, CommitResult, ImportSession, InventoryItem, MovementRecord

logger = logging.getLogger(__name__)


class InventoryStore(Protocol):
    async def list_all(self) -> List[InventoryItem]:
        ...

    async def insert(self, item: Dict[str, Any]) -> str:
        ...

    async def update(self, item_id: str, fields: Dict[str, Any]) -> None:
        ...


class MovementStore(Protocol):
    async def add(self, movement: MovementRecord) -> None:
        ...


class HistoryStore(Protocol):
    async def create(self, record: Dict[str, Any]) -> str:
        ...

    async def update(self, history_id: str, fields: Dict[str, Any]) -> None:
        ...

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        ...


def calculate_alert_threshold(quantity: float) -> float:
    """Soglia di allerta scorte: <=5 → 1, <=20 → 20%, altrimenti 10% (arrotondato per difetto)."""
    if quantity <= 5:
        return 1
    if quantity <= 20:
        return math.floor(quantity * 0.2)
    return math.floor(quantity * 0.1)


def default_sale_price(purchase_price: float, margin: float = 1.3) -> float:
    return round(purchase_price * margin, 2)


def movement_reason(session_id: str) -> str:
    return f"Import IA - {session_id}"


def build_inventory_item(candidate: CandidateRecord, margin: float = 1.3) -> Dict[str, Any]:
    """
    Campi di un nuovo prodotto a partire da un candidato normalizzato.

    Raises:
        RecordValidationError: nome vuoto, categoria o unità fuori dai valori ammessi
    """
    invalid = []
    if not candidate.name:
        invalid.append("name")
    if candidate.category not in CATEGORIES:
        invalid.append("category")
    if candidate.unit not in UNITS:
        invalid.append("unit")
    if invalid:
        raise RecordValidationError(
            f"Prodotto '{candidate.name}' non inseribile",
            details={"fields": invalid},
        )

    sale_price = candidate.sale_price
    if not sale_price:
        sale_price = default_sale_price(candidate.purchase_price, margin)
    return {
        'name': candidate.name,
        'category': candidate.category,
        'quantity': candidate.quantity,
        'unit': candidate.unit,
        'purchase_price': candidate.purchase_price,
        'sale_price': sale_price,
        'alert_threshold': calculate_alert_threshold(candidate.quantity),
        'supplier': candidate.supplier,
        'description': candidate.description,
    }


def build_update_fields(candidate: CandidateRecord, margin: float = 1.3) -> Dict[str, Any]:
    """Campi sovrascritti su un prodotto esistente; senza prezzo di vendita si ricalcola dal nuovo acquisto."""
    return {
        'quantity': candidate.quantity,
        'purchase_price': candidate.purchase_price,
        'sale_price': candidate.sale_price or default_sale_price(candidate.purchase_price, margin),
    }


async def commit_candidates(
    session: ImportSession,
    candidates: List[CandidateRecord],
    inventory_store: InventoryStore,
    movement_store: MovementStore,
    history_store: HistoryStore,
    history_record: Dict[str, Any],
    margin: float = 1.3,
) -> CommitResult:
    """
    Scrive i candidati accettati.

    Passi:
    1. record storico in stato 'pending'
    2. update dei prodotti esistenti / insert dei nuovi
    3. un movimento 'in' per ogni prodotto inserito
    4. aggiornamento storico con i conteggi finali
    5. errori sul singolo candidato contati come skipped

    Args:
        session: Sessione in stato validated o previewed
        candidates: Candidati accettati dal gate
        history_record: Campi iniziali del record storico
        margin: Moltiplicatore per il prezzo di vendita di default

    Returns:
        CommitResult con i conteggi
    """
    try:
        session.history_id = await history_store.create({**history_record, 'status': 'pending'})
    except Exception as e:
        logger.error(f"[COMMIT] Impossibile creare record storico per sessione {session.id}: {e}", exc_info=True)
        session.report_error("HISTORY_ERROR", str(e))
        session.fail()
        return CommitResult(
            success=False,
            added_count=0,
            updated_count=0,
            skipped_count=len(candidates),
            session_id=session.id,
            error=f"Errore creazione storico: {e}",
        )

    added = updated = skipped = movements = 0
    for candidate in candidates:
        try:
            if not candidate.is_new and candidate.matched_inventory_id:
                await inventory_store.update(candidate.matched_inventory_id, build_update_fields(candidate, margin))
                updated += 1
                continue

            product_id = await inventory_store.insert(build_inventory_item(candidate, margin))
            added += 1
        except Exception as e:
            skipped += 1
            code = e.code if isinstance(e, ImportPipelineError) else "WRITE_ERROR"
            logger.warning(f"[COMMIT] Candidato '{candidate.name}' non scritto ({code}): {e}")
            session.report_error(code, f"{candidate.name}: {e}", candidate.source_document_id)
            continue

        try:
            await movement_store.add(MovementRecord(
                product_id=product_id,
                type="in",
                quantity=candidate.quantity,
                previous_quantity=0,
                new_quantity=candidate.quantity,
                reason=movement_reason(session.id),
                session_id=session.id,
                product_name=candidate.name,
            ))
            movements += 1
        except Exception as e:
            logger.error(f"[COMMIT] Movimento non registrato per '{candidate.name}': {e}")
            session.report_error("MOVEMENT_ERROR", f"{candidate.name}: {e}", candidate.source_document_id)

    session.summary.added = added
    session.summary.updated = updated
    session.summary.skipped = skipped
    session.rollback_available = added + updated > 0
    session.transition("committed")

    error = None
    if skipped:
        error = f"{skipped} prodotti non importati"

    try:
        await history_store.update(session.history_id, {
            'status': 'committed',
            'success': True,
            'added_count': added,
            'updated_count': updated,
            'skipped_count': skipped,
            'error_count': session.summary.errors,
            'errors': list(session.errors),
            'error': error,
            'rollback_available': session.rollback_available,
        })
    except Exception as e:
        logger.error(f"[COMMIT] Aggiornamento storico fallito per sessione {session.id}: {e}", exc_info=True)

    logger.info(
        f"[COMMIT] Sessione {session.id}: added={added}, updated={updated}, "
        f"skipped={skipped}, movements={movements}"
    )
    return CommitResult(
        success=True,
        added_count=added,
        updated_count=updated,
        skipped_count=skipped,
        session_id=session.id,
        error=error,
        movements=movements,
    )
