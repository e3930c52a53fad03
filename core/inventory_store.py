"""
Inventory Store e Movement Store su SQLAlchemy async.

Ogni scrittura usa una propria sessione/transazione: il commit engine
scrive candidato per candidato e un errore non coinvolge gli altri.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from core.database import InventoryItemRecord, StockMovementRecord
from ingest.types import InventoryItem, MovementRecord, new_id

logger = logging.getLogger(__name__)

_ITEM_COLUMNS = {column.name for column in InventoryItemRecord.__table__.columns} - {"id", "created_at", "updated_at"}


def record_to_item(record: InventoryItemRecord) -> InventoryItem:
    return InventoryItem(
        id=record.id,
        name=record.name,
        category=record.category,
        quantity=record.quantity or 0.0,
        unit=record.unit or 'unit',
        purchase_price=record.purchase_price or 0.0,
        sale_price=record.sale_price,
        alert_threshold=record.alert_threshold or 0.0,
        supplier=record.supplier,
    )


class SqlInventoryStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def list_all(self) -> List[InventoryItem]:
        async with self.session_factory() as session:
            result = await session.execute(select(InventoryItemRecord).order_by(InventoryItemRecord.created_at))
            return [record_to_item(r) for r in result.scalars().all()]

    async def insert(self, item: Dict[str, Any]) -> str:
        """Inserisce un prodotto e ne restituisce l'ID."""
        item_id = new_id()
        values = {k: v for k, v in item.items() if k in _ITEM_COLUMNS}
        async with self.session_factory() as session:
            session.add(InventoryItemRecord(id=item_id, **values))
            await session.commit()
        logger.debug(f"[INVENTORY] Inserted {item_id} '{item.get('name')}'")
        return item_id

    async def update(self, item_id: str, fields: Dict[str, Any]) -> None:
        """
        Aggiorna un prodotto esistente.

        Raises:
            KeyError: prodotto non trovato
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(InventoryItemRecord).where(InventoryItemRecord.id == item_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise KeyError(f"Prodotto {item_id} non trovato")
            for key, value in fields.items():
                if key in _ITEM_COLUMNS:
                    setattr(record, key, value)
            await session.commit()
        logger.debug(f"[INVENTORY] Updated {item_id}: {sorted(fields)}")


class SqlMovementStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def add(self, movement: MovementRecord) -> None:
        async with self.session_factory() as session:
            session.add(StockMovementRecord(
                product_id=movement.product_id,
                product_name=movement.product_name,
                type=movement.type,
                quantity=movement.quantity,
                previous_quantity=movement.previous_quantity,
                new_quantity=movement.new_quantity,
                reason=movement.reason,
                session_id=movement.session_id,
                created_at=movement.created_at,
            ))
            await session.commit()

    async def list_for_session(self, session_id: str) -> List[MovementRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StockMovementRecord)
                .where(StockMovementRecord.session_id == session_id)
                .order_by(StockMovementRecord.id)
            )
            return [
                MovementRecord(
                    product_id=r.product_id,
                    type=r.type,
                    quantity=r.quantity,
                    previous_quantity=r.previous_quantity,
                    new_quantity=r.new_quantity,
                    reason=r.reason,
                    session_id=r.session_id,
                    product_name=r.product_name,
                    created_at=r.created_at,
                )
                for r in result.scalars().all()
            ]
