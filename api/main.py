"""
Applicazione FastAPI di import-processor.

Espone il router /imports e un health check con stato database e feature attive.
"""
import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from api.routers import imports
from core.config import get_config
from core.database import create_tables, get_db
from core.logger import setup_colored_logging

setup_colored_logging("processor")
logger = logging.getLogger(__name__)

config = get_config()

app = FastAPI(
    title="Import Processor",
    description="Import prodotti da fogli di calcolo, CSV, PDF, immagini e testo libero",
    version=config.processor_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)


@app.on_event("startup")
async def startup_event():
    """Crea le tabelle se mancanti; un database irraggiungibile non blocca l'avvio."""
    try:
        await create_tables()
    except Exception as e:
        logger.error(f"[STARTUP] Database non inizializzato: {e}")

    if config.llm_available:
        logger.info(f"[STARTUP] Estrazione IA attiva (modello {config.llm_model_extract})")
    else:
        logger.warning("[STARTUP] Estrazione IA disattiva: righe mappate sulle colonne riconosciute")


async def _database_status() -> str:
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
        return "connected"
    except Exception as e:
        return f"error: {e}"


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": config.processor_name,
        "version": config.processor_version,
        "timestamp": datetime.utcnow().isoformat(),
        "database": await _database_status(),
        "features": {
            "llm_extract_enabled": config.llm_available,
            "ocr_enabled": config.ocr_enabled,
        },
        "endpoints": {
            "preview": "/imports/preview",
            "commit": "/imports/{session_id}/commit",
            "discard": "/imports/{session_id}",
            "auto": "/imports/auto",
            "history": "/imports/history",
        },
    }
