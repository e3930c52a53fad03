"""
Configurazione pytest e fixture comuni.
"""
import os

import pytest

from core.config import ProcessorConfig
from ingest.pipeline import ImportPipeline
from ingest.types import InventoryItem, RawDocument
from tests.mocks import (
    InMemoryHistoryStore,
    InMemoryInventoryStore,
    InMemoryMovementStore,
    MockReasoningService,
    MockTextExtractor,
)

DATA_DIR = os.path.join(os.path.dirname(__file__), "data")


@pytest.fixture
def test_config():
    """Configurazione di test: nessuna chiave OpenAI, timeout brevi."""
    return ProcessorConfig(
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key="",
        extraction_timeout_sec=0.5,
        min_confidence_file=80.0,
        min_confidence_text=75.0,
    )


@pytest.fixture
def existing_items():
    return [
        InventoryItem(id="inv-chablis", name="Chablis 1er Cru", category="white_wine",
                      quantity=6, purchase_price=22.0, sale_price=35.0),
        InventoryItem(id="inv-margaux", name="Château Margaux 2015", category="red_wine",
                      quantity=2, purchase_price=450.0, sale_price=600.0),
    ]


@pytest.fixture
def inventory_store(existing_items):
    return InMemoryInventoryStore(existing_items)


@pytest.fixture
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture
def movement_store():
    return InMemoryMovementStore()


@pytest.fixture
def reasoning_service():
    return MockReasoningService()


@pytest.fixture
def make_pipeline(inventory_store, history_store, movement_store, test_config):
    """Factory pipeline con store in memoria."""
    def _make(reasoning_service=None, text_extractor=None):
        return ImportPipeline(
            inventory_store=inventory_store,
            history_store=history_store,
            movement_store=movement_store,
            reasoning_service=reasoning_service,
            text_extractor=text_extractor or MockTextExtractor(),
            config=test_config,
        )
    return _make


@pytest.fixture
def sample_csv_content():
    """Fixture per contenuto CSV di esempio."""
    with open(os.path.join(DATA_DIR, "inventory.csv"), "rb") as f:
        return f.read()


@pytest.fixture
def sample_csv_document(sample_csv_content):
    return RawDocument(file_name="inventory.csv", content=sample_csv_content, mime_hint="text/csv")
