"""
Router per import prodotti.

Endpoint:
- POST /imports/preview: anteprima da file e/o testo, nessuna scrittura
- POST /imports/{session_id}/commit: conferma una preview
- DELETE /imports/{session_id}: scarta una preview
- POST /imports/auto: import automatico con soglia di confidenza
- GET /imports/history: storico import utente
"""
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from core.config import get_config
from core.database import get_session_factory
from core.history import SqlHistoryStore
from core.inventory_store import SqlInventoryStore, SqlMovementStore
from core.logger import log_with_context, set_request_context
from ingest.errors import (
    ImportPipelineError,
    InsufficientConfidence,
    InvalidSessionTransition,
    SessionNotFound,
)
from ingest.llm_extract import OpenAIReasoningService
from ingest.ocr_extract import TesseractTextExtractor
from ingest.pipeline import ImportPipeline
from ingest.types import RawDocument

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])

_pipeline: Optional[ImportPipeline] = None


def get_pipeline() -> ImportPipeline:
    """Pipeline condivisa (le sessioni in preview vivono in memoria)."""
    global _pipeline
    if _pipeline is None:
        config = get_config()
        session_factory = get_session_factory()
        reasoning_service = OpenAIReasoningService() if config.llm_available else None
        _pipeline = ImportPipeline(
            inventory_store=SqlInventoryStore(session_factory),
            history_store=SqlHistoryStore(session_factory),
            movement_store=SqlMovementStore(session_factory),
            reasoning_service=reasoning_service,
            text_extractor=TesseractTextExtractor() if config.ocr_enabled else None,
            config=config,
        )
        logger.info(
            f"[IMPORTS] Pipeline inizializzata: llm={'on' if reasoning_service else 'off'}, "
            f"ocr={'on' if config.ocr_enabled else 'off'}"
        )
    return _pipeline


def _http_error(error: ImportPipelineError) -> HTTPException:
    if isinstance(error, SessionNotFound):
        status_code = 404
    elif isinstance(error, InsufficientConfidence):
        status_code = 422
    elif isinstance(error, InvalidSessionTransition):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=error.to_dict())


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[RawDocument]:
    documents = []
    for upload in files or []:
        content = await upload.read()
        documents.append(RawDocument(
            file_name=upload.filename or "upload",
            content=content,
            mime_hint=upload.content_type,
        ))
    return documents


def _require_input(documents: List[RawDocument], text: Optional[str]) -> None:
    if not documents and not (text and text.strip()):
        raise HTTPException(status_code=400, detail="Fornire almeno un file o del testo")
    if documents and text and text.strip():
        raise HTTPException(status_code=400, detail="Fornire file oppure testo, non entrambi")


@router.post("/preview")
async def preview_import(
    user_id: str = Form(...),
    files: Optional[List[UploadFile]] = File(None),
    text: Optional[str] = Form(None),
    min_confidence: Optional[float] = Form(None, ge=0, le=100),
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    """
    Anteprima import: candidati, riepilogo, alert, suggerimenti, impatto.

    L'inventario non viene modificato fino al commit della sessione.
    """
    correlation_id = str(uuid.uuid4())
    set_request_context(user_id=user_id, correlation_id=correlation_id)
    documents = await _read_uploads(files)
    _require_input(documents, text)

    log_with_context(
        "info",
        f"[IMPORTS] Preview richiesta: files={[d.file_name for d in documents]}, text={bool(text)}",
    )
    try:
        if documents:
            preview = await pipeline.preview_documents(user_id, documents, min_confidence)
        else:
            preview = await pipeline.preview_text(user_id, text, min_confidence)
    except ImportPipelineError as e:
        raise _http_error(e)

    response = preview.to_dict()
    response["correlation_id"] = correlation_id
    return response


@router.post("/auto")
async def auto_import(
    user_id: str = Form(...),
    files: Optional[List[UploadFile]] = File(None),
    text: Optional[str] = Form(None),
    min_confidence: Optional[float] = Form(None, ge=0, le=100),
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    """Import automatico: scrive solo i candidati con confidenza >= soglia."""
    correlation_id = str(uuid.uuid4())
    set_request_context(user_id=user_id, correlation_id=correlation_id)
    documents = await _read_uploads(files)
    _require_input(documents, text)

    try:
        if documents:
            result = await pipeline.import_documents(user_id, documents, min_confidence)
        else:
            result = await pipeline.import_text(user_id, text, min_confidence)
    except ImportPipelineError as e:
        log_with_context("warning", f"[IMPORTS] Import automatico annullato: {e.message}")
        raise _http_error(e)

    return result.to_dict()


@router.post("/{session_id}/commit")
async def commit_import(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    try:
        result = await pipeline.commit_session(session_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    return result.to_dict()


@router.delete("/{session_id}")
async def discard_import(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    try:
        pipeline.discard(session_id)
    except ImportPipelineError as e:
        raise _http_error(e)
    return {"status": "discarded", "session_id": session_id}


@router.get("/history")
async def import_history(
    user_id: str = Query(...),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    """Storico import dell'utente, dal più recente."""
    records = await pipeline.history(user_id, limit)
    return {"user_id": user_id, "count": len(records), "history": records}
