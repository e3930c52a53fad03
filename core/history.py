"""
History Store per import-processor.

Storico append-only delle sessioni di import, interrogabile per utente.
rollback_available viene registrato ma nessun rollback automatico è previsto.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from core.database import ImportHistoryRecord
from ingest.types import new_id

logger = logging.getLogger(__name__)

# Colonne serializzate come JSON in Text
_JSON_FIELDS = ("file_names", "errors", "auto_import_settings")

_COLUMNS = {column.name for column in ImportHistoryRecord.__table__.columns}


def _to_columns(fields: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for key, value in fields.items():
        if key not in _COLUMNS:
            continue
        if key in _JSON_FIELDS and value is not None:
            value = json.dumps(value, ensure_ascii=False, default=str)
        values[key] = value
    return values


def history_to_dict(record: ImportHistoryRecord) -> Dict[str, Any]:
    """Converte un record storico in dict (JSON decodificato)."""
    data = {}
    for name in _COLUMNS:
        value = getattr(record, name)
        if name in _JSON_FIELDS and value:
            value = json.loads(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        data[name] = value
    return data


class SqlHistoryStore:
    """Storico import su SQLAlchemy async."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def create(self, record: Dict[str, Any]) -> str:
        """
        Crea un record storico.

        Args:
            record: Campi del record (session_id, user_id, status, ...)

        Returns:
            history_id: ID univoco del record
        """
        history_id = new_id()
        async with self.session_factory() as session:
            session.add(ImportHistoryRecord(id=history_id, **_to_columns(record)))
            await session.commit()

        logger.info(
            f"[HISTORY] Created history {history_id} for user_id={record.get('user_id')}, "
            f"status={record.get('status')}"
        )
        return history_id

    async def update(self, history_id: str, fields: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportHistoryRecord).where(ImportHistoryRecord.id == history_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                logger.warning(f"[HISTORY] History {history_id} not found for update")
                return

            for key, value in _to_columns(fields).items():
                setattr(record, key, value)
            await session.commit()

        logger.info(f"[HISTORY] Updated history {history_id}: status={fields.get('status')}")

    async def get(self, history_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportHistoryRecord).where(ImportHistoryRecord.id == history_id)
            )
            record = result.scalar_one_or_none()
            return history_to_dict(record) if record else None

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Storico di un utente, dal più recente."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportHistoryRecord)
                .where(ImportHistoryRecord.user_id == user_id)
                .order_by(ImportHistoryRecord.created_at.desc())
                .limit(limit)
            )
            return [history_to_dict(record) for record in result.scalars().all()]
