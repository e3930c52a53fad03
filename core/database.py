"""
Database core module per import-processor.

Modelli (inventario, storico import, movimenti), engine asincrono e
session factory. Nessuna foreign key: la coerenza tra storico, movimenti
e prodotti è gestita a livello applicativo.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from core.config import get_config

logger = logging.getLogger(__name__)

# Base per i modelli
Base = declarative_base()


class InventoryItemRecord(Base):
    """Prodotto in inventario"""
    __tablename__ = 'inventory_items'

    id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)
    quantity = Column(Float, default=0.0)
    unit = Column(String(20), default='unit')
    purchase_price = Column(Float, default=0.0)
    sale_price = Column(Float)
    alert_threshold = Column(Float, default=0.0)
    supplier = Column(String(200))
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImportHistoryRecord(Base):
    """Storico sessioni di import (append-only)"""
    __tablename__ = 'import_history'

    id = Column(String(32), primary_key=True)
    session_id = Column(String(32), nullable=False, index=True)
    user_id = Column(String(100), nullable=False, index=True)

    # Sorgente
    file_names = Column(Text)  # JSON list
    text_input = Column(Text)

    # Stato e conteggi
    status = Column(String(20), nullable=False, default='pending')
    success = Column(Boolean, default=False)
    products_count = Column(Integer, default=0)
    excluded_count = Column(Integer, default=0)
    added_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    skipped_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    error = Column(Text)
    errors = Column(Text)  # JSON list

    # Audit
    rollback_available = Column(Boolean, default=False)
    analysis_log = Column(Text)
    is_auto_import = Column(Boolean, default=False)
    auto_import_settings = Column(Text)  # JSON

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class StockMovementRecord(Base):
    """Movimento di magazzino generato da un import"""
    __tablename__ = 'stock_movements'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(32), nullable=False, index=True)
    product_name = Column(String(200))
    type = Column(String(10), nullable=False)
    quantity = Column(Float, nullable=False)
    previous_quantity = Column(Float, default=0.0)
    new_quantity = Column(Float, default=0.0)
    reason = Column(String(200))
    session_id = Column(String(32), index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


def get_database_url() -> str:
    """Ottiene DATABASE_URL dalla configurazione (driver asyncpg)."""
    url = get_config().database_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine_from_url(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Engine asincrono (singleton, creato al primo uso)."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_url(get_database_url())
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def get_db():
    """Dependency per ottenere sessione database"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(engine: Optional[AsyncEngine] = None):
    """Crea le tabelle inventory_items, import_history, stock_movements se mancanti."""
    engine = engine or get_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[DATABASE] Tabelle verificate/create")
    except Exception as e:
        logger.error(f"[DATABASE] Errore creazione tabelle: {e}", exc_info=True)
        raise
