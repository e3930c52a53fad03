"""
Pipeline Orchestratore - Sessione di import dall'ingestione al commit.

Flow:
1. Snapshot inventario (una sola volta per sessione)
2. Lettura + estrazione documenti in parallelo, ognuno con timeout;
   un documento che fallisce viene riportato e saltato
3. Normalizzazione → Duplicati → Gate confidenza
4. Preview (revisione manuale) oppure commit automatico

Stati sessione: initialized → extracted → validated → (previewed | committed)
→ (closed | failed).
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from core.config import ProcessorConfig, get_config
from core.logger import log_json
from ingest.commit import HistoryStore, InventoryStore, MovementStore, commit_candidates
from ingest.confidence import apply_gate, split_committable
from ingest.dedup import resolve_duplicates
from ingest.errors import ImportPipelineError, InsufficientConfidence, SessionNotFound
from ingest.llm_extract import DEFAULT_CONFIDENCE, ReasoningService, extract_candidates
from ingest.normalization import normalize_candidates
from ingest.parser import candidates_from_rows
from ingest.reader import TextExtractor, read_document, read_text
from ingest.types import (
    CandidateRecord,
    CommitResult,
    ImportPreview,
    ImportSession,
    InventorySnapshot,
    RawDocument,
    ReadResult,
    SourceKind,
    new_id,
)

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_ERROR = 50
REVIEW_CONFIDENCE = 70
HIGH_VALUE_PRICE = 50
MAX_CATEGORIES_HINT = 5


def _average_confidence(candidates: List[CandidateRecord]) -> float:
    if not candidates:
        return 0.0
    return round(sum(c.confidence or 0.0 for c in candidates) / len(candidates), 1)


def build_preview(
    session: ImportSession,
    snapshot: InventorySnapshot,
    threshold: float,
) -> ImportPreview:
    """
    Costruisce l'anteprima di una sessione validata.

    Oltre al riepilogo produce alert (confidenza < 50, doppioni, documenti
    falliti), suggerimenti e impatto stimato sul valore di magazzino.
    """
    candidates = session.candidate_records
    new_count = sum(1 for c in candidates if c.is_new)
    duplicates = len(candidates) - new_count
    low_confidence = sum(1 for c in candidates if c.low_confidence)
    very_low = sum(1 for c in candidates if (c.confidence or 0.0) < LOW_CONFIDENCE_ERROR)

    alerts: List[Dict[str, Any]] = []
    if very_low:
        alerts.append({'type': 'error', 'message': f"{very_low} prodotto/i con confidenza bassa (<{LOW_CONFIDENCE_ERROR}%)"})
    if duplicates:
        alerts.append({'type': 'warning', 'message': f"{duplicates} doppione/i rilevato/i - verranno aggiornati"})
    for error in session.errors:
        alerts.append({
            'type': 'error',
            'message': error['message'],
            'code': error['code'],
            'document': error.get('document'),
        })

    suggestions: List[str] = []
    categories = {c.category for c in candidates}
    if len(categories) > MAX_CATEGORIES_HINT:
        suggestions.append(f"Import con {len(categories)} categorie diverse: verificare la classificazione")
    to_review = sum(1 for c in candidates if (c.confidence or 0.0) < REVIEW_CONFIDENCE)
    if to_review:
        suggestions.append(f"{to_review} prodotto/i da verificare manualmente (confidenza < {REVIEW_CONFIDENCE}%)")
    high_value = sum(1 for c in candidates if (c.purchase_price or 0.0) > HIGH_VALUE_PRICE)
    if high_value:
        suggestions.append(f"{high_value} prodotto/i di alto valore (> {HIGH_VALUE_PRICE}€): controllare i prezzi")

    known_categories = set(snapshot.categories)
    new_categories = sorted(c for c in categories if c and c not in known_categories)
    stock_value_delta = round(sum((c.purchase_price or 0.0) * (c.quantity or 0.0) for c in candidates), 2)

    analysis_log = (
        f"Import di {len(candidates)} prodotti analizzati. "
        f"Confidenza media: {_average_confidence(candidates):g}%. "
        f"Nuovi: {new_count}, da aggiornare: {duplicates}, sotto soglia {threshold:g}%: {low_confidence}."
    )

    return ImportPreview(
        session_id=session.id,
        candidate_records=candidates,
        summary={
            'total': len(candidates),
            'new': new_count,
            'updated': duplicates,
            'duplicates': duplicates,
            'low_confidence': low_confidence,
        },
        alerts=alerts,
        suggestions=suggestions,
        estimated_impact={
            'stock_value_delta': stock_value_delta,
            'new_categories': new_categories,
            'potential_issues': [a['message'] for a in alerts if a['type'] == 'error'],
        },
        analysis_log=analysis_log,
    )


class ImportPipeline:
    """
    Orchestratore delle sessioni di import.

    Le sessioni in preview restano in memoria fino a commit o scarto:
    l'inventario non viene toccato prima del commit.
    """

    def __init__(
        self,
        inventory_store: InventoryStore,
        history_store: HistoryStore,
        movement_store: MovementStore,
        reasoning_service: Optional[ReasoningService] = None,
        text_extractor: Optional[TextExtractor] = None,
        config: Optional[ProcessorConfig] = None,
    ):
        self.inventory_store = inventory_store
        self.history_store = history_store
        self.movement_store = movement_store
        self.reasoning_service = reasoning_service
        self.text_extractor = text_extractor
        self.config = config or get_config()
        self.sessions: Dict[str, Tuple[ImportSession, InventorySnapshot, float]] = {}

    # ------------------------------------------------------------------
    # Estrazione
    # ------------------------------------------------------------------

    async def _take_snapshot(self) -> InventorySnapshot:
        items = await self.inventory_store.list_all()
        logger.info(f"[PIPELINE] Snapshot inventario: {len(items)} prodotti")
        return InventorySnapshot.of(items)

    async def _extract(self, session: ImportSession, read_result: ReadResult, source: SourceKind) -> List[CandidateRecord]:
        if self.reasoning_service is not None:
            candidates, outcomes = await extract_candidates(
                read_result,
                self.reasoning_service,
                source=source,
                rows_per_chunk=self.config.llm_rows_per_chunk,
            )
            statuses = [o.status for o in outcomes]
            if statuses:
                worst = max(statuses, key=("parsed", "fallback_parsed", "unrecoverable").index)
                session.parse_outcomes[read_result.document_id] = worst
                if all(s == "unrecoverable" for s in statuses):
                    session.report_error(
                        "MALFORMED_EXTRACTION_REPLY",
                        f"Risposta del servizio non interpretabile per {read_result.file_name}",
                        read_result.file_name,
                    )
            return candidates

        # Senza servizio di estrazione: mappatura diretta delle righe
        confidence = DEFAULT_CONFIDENCE[source]
        ocr_confidence = read_result.metadata.get('ocr_confidence')
        if ocr_confidence is not None:
            confidence = min(ocr_confidence * 100.0, confidence)
        return candidates_from_rows(
            read_result.rows,
            read_result.header,
            read_result.document_id,
            confidence,
            source,
        )

    async def _read_and_extract(self, session: ImportSession, document: RawDocument) -> List[CandidateRecord]:
        read_result = await read_document(document, self.text_extractor)
        return await self._extract(session, read_result, "file")

    async def _process_document(self, session: ImportSession, document: RawDocument) -> List[CandidateRecord]:
        """Lettura + estrazione di un documento; gli errori saltano solo questo documento."""
        start_time = time.time()
        try:
            candidates = await asyncio.wait_for(
                self._read_and_extract(session, document),
                timeout=self.config.extraction_timeout_sec,
            )
        except ImportPipelineError as e:
            logger.warning(f"[PIPELINE] Documento {document.file_name} saltato: [{e.code}] {e.message}")
            session.report_error(e.code, e.message, document.file_name)
            return []
        except asyncio.TimeoutError:
            logger.warning(f"[PIPELINE] Timeout elaborazione {document.file_name}")
            session.report_error(
                "SERVICE_ERROR",
                f"Timeout elaborazione ({self.config.extraction_timeout_sec:g}s)",
                document.file_name,
            )
            return []
        except ValueError as e:
            logger.warning(f"[PIPELINE] Documento {document.file_name} illeggibile: {e}")
            session.report_error("UNREADABLE_DOCUMENT", str(e), document.file_name)
            return []

        log_json(
            level='info',
            message=f"Documento elaborato: {len(candidates)} candidati",
            stage='extract',
            session_id=session.id,
            file_name=document.file_name,
            candidates=len(candidates),
            elapsed_sec=time.time() - start_time,
        )
        return candidates

    async def _process_text(self, session: ImportSession, text: str) -> List[CandidateRecord]:
        read_result = read_text(text, document_id=new_id())
        session.source_document_ids.append(read_result.document_id)
        try:
            return await asyncio.wait_for(
                self._extract(session, read_result, "text"),
                timeout=self.config.extraction_timeout_sec,
            )
        except ImportPipelineError as e:
            logger.warning(f"[PIPELINE] Testo non elaborato: [{e.code}] {e.message}")
            session.report_error(e.code, e.message, "text-input")
        except asyncio.TimeoutError:
            logger.warning("[PIPELINE] Timeout elaborazione testo")
            session.report_error("SERVICE_ERROR", "Timeout elaborazione testo", "text-input")
        return []

    async def _collect(
        self,
        session: ImportSession,
        documents: Optional[List[RawDocument]] = None,
        text: Optional[str] = None,
    ) -> InventorySnapshot:
        """Estrae, normalizza e risolve i duplicati; porta la sessione in validated."""
        snapshot = await self._take_snapshot()

        candidates: List[CandidateRecord] = []
        if documents:
            results = await asyncio.gather(*(self._process_document(session, d) for d in documents))
            for document_candidates in results:
                candidates.extend(document_candidates)
        if text:
            candidates.extend(await self._process_text(session, text))
        session.transition("extracted")

        normalize_candidates(candidates, DEFAULT_CONFIDENCE[session.source_kind])
        resolve_duplicates(candidates, snapshot, self.config.fuzzy_match_threshold)
        session.candidate_records = candidates
        session.transition("validated")

        log_json(
            level='info',
            message=f"Sessione validata: {len(candidates)} candidati",
            user_id=session.user_id,
            stage='validate',
            session_id=session.id,
            candidates=len(candidates),
            errors=len(session.errors),
        )
        return snapshot

    def _new_session(
        self,
        user_id: str,
        documents: Optional[List[RawDocument]] = None,
        text: Optional[str] = None,
    ) -> ImportSession:
        documents = documents or []
        return ImportSession(
            user_id=user_id,
            source_kind="text" if text and not documents else "file",
            source_document_ids=[d.id for d in documents],
            file_names=[d.file_name for d in documents],
            text_input=text,
        )

    def _threshold(self, session: ImportSession, min_confidence: Optional[float]) -> float:
        if min_confidence is not None:
            return float(min_confidence)
        return self.config.default_threshold(session.source_kind)

    def _history_record(
        self,
        session: ImportSession,
        analysis_log: str,
        is_auto_import: bool,
        threshold: float,
        accepted: List[CandidateRecord],
        excluded_count: int = 0,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'session_id': session.id,
            'user_id': session.user_id,
            'file_names': list(session.file_names),
            'text_input': session.text_input,
            'products_count': len(accepted),
            'excluded_count': excluded_count,
            'success': False,
            'rollback_available': True,
            'analysis_log': analysis_log,
            'is_auto_import': is_auto_import,
            'auto_import_settings': None,
            'errors': list(session.errors),
        }
        if is_auto_import:
            record['auto_import_settings'] = {
                'threshold': threshold,
                'min_confidence': min((c.confidence or 0.0 for c in accepted), default=0.0),
                'avg_confidence': _average_confidence(accepted),
                'auto_approved': True,
            }
        return record

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    async def _preview(
        self,
        session: ImportSession,
        documents: Optional[List[RawDocument]],
        text: Optional[str],
        min_confidence: Optional[float],
    ) -> ImportPreview:
        start_time = time.time()
        snapshot = await self._collect(session, documents, text)
        threshold = self._threshold(session, min_confidence)
        apply_gate(session.candidate_records, "preview", threshold)
        session.transition("previewed")
        self._purge_sessions(incoming=1)
        self.sessions[session.id] = (session, snapshot, threshold)

        preview = build_preview(session, snapshot, threshold)
        log_json(
            level='info',
            message="Preview generata",
            user_id=session.user_id,
            stage='preview',
            session_id=session.id,
            candidates=preview.summary['total'],
            elapsed_sec=time.time() - start_time,
            decision='previewed',
        )
        return preview

    async def preview_documents(
        self,
        user_id: str,
        documents: List[RawDocument],
        min_confidence: Optional[float] = None,
    ) -> ImportPreview:
        """
        Elabora documenti e restituisce l'anteprima, senza scrivere nulla.

        Args:
            user_id: Utente che importa
            documents: Documenti caricati
            min_confidence: Soglia per il flag low_confidence (default per sorgente)
        """
        session = self._new_session(user_id, documents=documents)
        return await self._preview(session, documents, None, min_confidence)

    async def preview_text(
        self,
        user_id: str,
        text: str,
        min_confidence: Optional[float] = None,
    ) -> ImportPreview:
        session = self._new_session(user_id, text=text)
        return await self._preview(session, None, text, min_confidence)

    def _purge_sessions(self, incoming: int = 0) -> None:
        """Chiude le preview scadute e, oltre il limite, le più vecchie (per far posto a incoming)."""
        cutoff = datetime.utcnow() - timedelta(seconds=self.config.preview_ttl_sec)
        expired = [sid for sid, (session, _, _) in self.sessions.items() if session.created_at < cutoff]
        overflow = len(self.sessions) - len(expired) + incoming - self.config.max_preview_sessions
        if overflow > 0:
            expired += [sid for sid in self.sessions if sid not in expired][:overflow]

        for session_id in expired:
            session, _, _ = self.sessions.pop(session_id)
            session.transition("closed")
        if expired:
            logger.info(f"[PIPELINE] {len(expired)} preview scadute rimosse, {len(self.sessions)} ancora aperte")

    def get_session(self, session_id: str) -> ImportSession:
        self._purge_sessions()
        try:
            return self.sessions[session_id][0]
        except KeyError:
            raise SessionNotFound(
                f"Sessione {session_id} non trovata",
                details={"session_id": session_id},
            ) from None

    async def commit_session(self, session_id: str) -> CommitResult:
        """
        Conferma una sessione in preview.

        Sono scritti i candidati mostrati, esclusi quelli con errori di
        validazione e confidenza sotto soglia: questi vengono riportati
        come VALIDATION_ERROR e contati tra gli esclusi nello storico.
        """
        session = self.get_session(session_id)
        _, snapshot, threshold = self.sessions.pop(session_id)

        accepted, blocked = split_committable(session.candidate_records)
        for candidate in blocked:
            session.report_error(
                "VALIDATION_ERROR",
                f"{candidate.name}: {', '.join(candidate.validation_errors)}",
                candidate.source_document_id,
            )
        preview = build_preview(session, snapshot, threshold)
        result = await commit_candidates(
            session,
            accepted,
            self.inventory_store,
            self.movement_store,
            self.history_store,
            self._history_record(session, preview.analysis_log, False, threshold, accepted, len(blocked)),
            margin=self.config.default_margin,
        )
        return self._close(session, result)

    def discard(self, session_id: str) -> None:
        """Scarta una sessione in preview; l'inventario non è stato toccato."""
        session = self.get_session(session_id)
        self.sessions.pop(session_id)
        session.transition("closed")
        logger.info(f"[PIPELINE] Sessione {session_id} scartata")

    # ------------------------------------------------------------------
    # Import automatico
    # ------------------------------------------------------------------

    async def _auto_import(
        self,
        session: ImportSession,
        documents: Optional[List[RawDocument]],
        text: Optional[str],
        min_confidence: Optional[float],
    ) -> CommitResult:
        start_time = time.time()
        snapshot = await self._collect(session, documents, text)
        threshold = self._threshold(session, min_confidence)

        try:
            accepted, excluded = apply_gate(session.candidate_records, "automatic", threshold)
        except InsufficientConfidence as e:
            session.report_error(e.code, e.message)
            session.fail()
            await self._record_failure(session, e, threshold)
            log_json(
                level='warning',
                message=e.message,
                user_id=session.user_id,
                stage='gate',
                session_id=session.id,
                candidates=len(session.candidate_records),
                elapsed_sec=time.time() - start_time,
                decision='failed',
            )
            raise

        preview = build_preview(session, snapshot, threshold)
        result = await commit_candidates(
            session,
            accepted,
            self.inventory_store,
            self.movement_store,
            self.history_store,
            self._history_record(session, preview.analysis_log, True, threshold, accepted, len(excluded)),
            margin=self.config.default_margin,
        )
        log_json(
            level='info',
            message="Import automatico completato" if result.success else "Import automatico fallito",
            user_id=session.user_id,
            stage='commit',
            session_id=session.id,
            candidates=len(accepted),
            elapsed_sec=time.time() - start_time,
            decision='committed' if result.success else 'failed',
            added=result.added_count,
            updated=result.updated_count,
            skipped=result.skipped_count,
            excluded=len(excluded),
        )
        return self._close(session, result)

    async def _record_failure(self, session: ImportSession, error: ImportPipelineError, threshold: float) -> None:
        record = self._history_record(session, error.message, True, threshold, [])
        record.update({'status': 'failed', 'error': error.message, 'rollback_available': False,
                       'excluded_count': len(session.candidate_records)})
        try:
            session.history_id = await self.history_store.create(record)
        except Exception as e:
            logger.error(f"[PIPELINE] Storico non salvato per sessione fallita {session.id}: {e}", exc_info=True)

    def _close(self, session: ImportSession, result: CommitResult) -> CommitResult:
        if session.status == "committed":
            session.transition("closed")
        return result

    async def import_documents(
        self,
        user_id: str,
        documents: List[RawDocument],
        min_confidence: Optional[float] = None,
    ) -> CommitResult:
        """
        Import automatico: solo i candidati con confidenza >= soglia vengono scritti.

        Raises:
            InsufficientConfidence: nessun candidato sopra soglia (nulla scritto)
        """
        session = self._new_session(user_id, documents=documents)
        return await self._auto_import(session, documents, None, min_confidence)

    async def import_text(
        self,
        user_id: str,
        text: str,
        min_confidence: Optional[float] = None,
    ) -> CommitResult:
        session = self._new_session(user_id, text=text)
        return await self._auto_import(session, None, text, min_confidence)

    async def history(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.history_store.list_for_user(user_id, limit or self.config.history_limit)
