"""
Test unitari per il commit engine.
"""
import pytest

from ingest.commit import (
    build_inventory_item,
    build_update_fields,
    calculate_alert_threshold,
    commit_candidates,
    default_sale_price,
)
from ingest.errors import RecordValidationError
from ingest.types import CandidateRecord, ImportSession
from tests.mocks import InMemoryHistoryStore


def _candidate(name, quantity=12.0, purchase_price=10.0, sale_price=None, matched=None):
    return CandidateRecord(
        source_document_id="doc-1",
        name=name,
        category="red_wine",
        quantity=quantity,
        unit="bottle",
        purchase_price=purchase_price,
        sale_price=sale_price,
        confidence=85.0,
        is_new=matched is None,
        matched_inventory_id=matched,
    )


def _validated_session():
    session = ImportSession(user_id="user-1")
    session.transition("extracted")
    session.transition("validated")
    return session


class TestHelpers:
    """Test per soglia allerta e prezzi."""

    @pytest.mark.parametrize("quantity,expected", [
        (1, 1), (5, 1), (6, 1), (12, 2), (20, 4), (21, 2), (48, 4), (100, 10),
    ])
    def test_alert_threshold(self, quantity, expected):
        assert calculate_alert_threshold(quantity) == expected

    def test_default_sale_price(self):
        assert default_sale_price(15.5) == 20.15
        assert default_sale_price(10.0, margin=2.0) == 20.0

    def test_new_item_fields(self):
        item = build_inventory_item(_candidate("Bordeaux", quantity=12, purchase_price=15.5))

        assert item['sale_price'] == 20.15
        assert item['alert_threshold'] == 2
        assert item['unit'] == "bottle"

    def test_explicit_sale_price_kept(self):
        assert build_inventory_item(_candidate("Bordeaux", sale_price=25.0))['sale_price'] == 25.0

    def test_invalid_item_rejected(self):
        candidate = _candidate("Bordeaux")
        candidate.category = "wine"
        candidate.unit = "case"

        with pytest.raises(RecordValidationError) as exc_info:
            build_inventory_item(candidate)

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.details == {"fields": ["category", "unit"]}

    def test_update_fields(self):
        assert build_update_fields(_candidate("A", quantity=3, purchase_price=9.0)) == {
            'quantity': 3, 'purchase_price': 9.0, 'sale_price': 11.7,
        }
        assert build_update_fields(_candidate("A", sale_price=14.0))['sale_price'] == 14.0
        assert build_update_fields(_candidate("A", purchase_price=10.0), margin=2.0)['sale_price'] == 20.0


class TestCommitCandidates:
    """Test per commit_candidates."""

    @pytest.mark.asyncio
    async def test_insert_and_update(self, inventory_store, movement_store, history_store):
        session = _validated_session()
        candidates = [
            _candidate("Bordeaux Rouge 2020"),
            _candidate("Chablis 1er Cru", quantity=18, purchase_price=23.0, matched="inv-chablis"),
        ]

        result = await commit_candidates(
            session, candidates, inventory_store, movement_store, history_store, {'user_id': "user-1"},
        )

        assert result.success is True
        assert (result.added_count, result.updated_count, result.skipped_count) == (1, 1, 0)
        assert inventory_store.items["inv-chablis"]['quantity'] == 18
        assert inventory_store.items["inv-chablis"]['purchase_price'] == 23.0
        assert session.status == "committed"
        assert session.rollback_available is True

        # Solo i prodotti inseriti generano un movimento
        assert len(movement_store.movements) == 1
        movement = movement_store.movements[0]
        assert movement.type == "in"
        assert movement.previous_quantity == 0
        assert movement.new_quantity == 12.0
        assert movement.reason == f"Import IA - {session.id}"

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_counts(self, inventory_store, movement_store, history_store):
        """Un errore di scrittura salta solo quel candidato."""
        inventory_store.fail_on_names = {"Vodka Absolut"}
        session = _validated_session()
        candidates = [_candidate("Gin Tonic"), _candidate("Vodka Absolut"), _candidate("Rhum Diplomatico")]

        result = await commit_candidates(
            session, candidates, inventory_store, movement_store, history_store, {'user_id': "user-1"},
        )

        assert result.success is True
        assert result.added_count + result.updated_count + result.skipped_count == len(candidates)
        assert result.skipped_count == 1
        assert result.error == "1 prodotti non importati"
        assert session.errors[0]['code'] == "WRITE_ERROR"

        history = history_store.records[session.history_id]
        assert history['skipped_count'] == 1
        assert history['error_count'] == 1
        assert history['errors'] == session.errors
        assert history['errors'][0]['message'].startswith("Vodka Absolut")

    @pytest.mark.asyncio
    async def test_invalid_candidate_skipped(self, inventory_store, movement_store, history_store):
        invalid = _candidate("Amaro")
        invalid.category = ""
        session = _validated_session()

        result = await commit_candidates(
            session, [_candidate("Gin Tonic"), invalid], inventory_store, movement_store, history_store,
            {'user_id': "user-1"},
        )

        assert result.added_count == 1
        assert result.skipped_count == 1
        assert session.errors[0]['code'] == "VALIDATION_ERROR"
        names = [item.name for item in await inventory_store.list_all()]
        assert "Gin Tonic" in names
        assert "Amaro" not in names

    @pytest.mark.asyncio
    async def test_history_lifecycle(self, inventory_store, movement_store, history_store):
        session = _validated_session()

        await commit_candidates(
            session, [_candidate("Gin Tonic")], inventory_store, movement_store, history_store,
            {'user_id': "user-1"},
        )

        assert history_store.statuses_seen == ["pending", "committed"]
        record = history_store.records[session.history_id]
        assert record['success'] is True
        assert record['added_count'] == 1

    @pytest.mark.asyncio
    async def test_history_unavailable(self, inventory_store, movement_store):
        """Senza record storico non viene scritto nulla."""
        history_store = InMemoryHistoryStore(fail_create=True)
        session = _validated_session()
        items_before = dict(inventory_store.items)

        result = await commit_candidates(
            session, [_candidate("Gin Tonic"), _candidate("Porto Tawny")],
            inventory_store, movement_store, history_store, {'user_id': "user-1"},
        )

        assert result.success is False
        assert result.skipped_count == 2
        assert result.added_count == result.updated_count == 0
        assert inventory_store.items == items_before
        assert session.status == "failed"
