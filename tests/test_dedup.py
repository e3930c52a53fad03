from __future__ import annotations

import pytest

from ingest.dedup import find_duplicate, levenshtein_similarity, resolve_duplicates
from ingest.types import CandidateRecord, InventoryItem, InventorySnapshot


def _candidate(name, category):
    return CandidateRecord(source_document_id="doc-1", name=name, category=category,
                           quantity=6.0, purchase_price=20.0, confidence=80.0)


@pytest.fixture
def snapshot(existing_items):
    return InventorySnapshot.of(existing_items)


def test_similarity_formula():
    assert levenshtein_similarity("abcd", "abcf") == 0.75
    assert levenshtein_similarity("kitten", "sitting") == pytest.approx(4 / 7)
    assert levenshtein_similarity("", "") == 1.0


def test_similarity_expands_abbreviations():
    assert levenshtein_similarity("Chablis Premier Cru", "Chablis 1er Cru") == 1.0
    assert levenshtein_similarity("St Emilion", "Saint-Émilion") == 1.0


def test_abbreviated_name_matches_existing(snapshot):
    candidate = _candidate("Chablis Premier Cru", "white_wine")

    resolve_duplicates([candidate], snapshot)

    assert candidate.is_new is False
    assert candidate.matched_inventory_id == "inv-chablis"


def test_close_vintage_matches(snapshot):
    item = find_duplicate(_candidate("Chateau Margaux 2016", "red_wine"), snapshot)
    assert item is not None and item.id == "inv-margaux"


def test_fuzzy_match_requires_same_category(snapshot):
    candidate = _candidate("Chablis Premier Cru", "red_wine")

    resolve_duplicates([candidate], snapshot)

    assert candidate.is_new is True
    assert candidate.matched_inventory_id is None


def test_exact_name_ignores_category(snapshot):
    """Nome identico (case-insensitive, trim) vince su qualsiasi categoria."""
    item = find_duplicate(_candidate("  chablis 1ER cru ", "beer"), snapshot)
    assert item.id == "inv-chablis"


def test_threshold_is_strict():
    """Similarità esattamente 0.8 non è un doppione."""
    snapshot = InventorySnapshot.of([InventoryItem(id="inv-1", name="abcde", category="other")])

    assert find_duplicate(_candidate("abcdf", "other"), snapshot) is None
    assert find_duplicate(_candidate("abcdf", "other"), snapshot, threshold=0.79).id == "inv-1"


def test_unrelated_names_are_new(snapshot):
    candidates = [_candidate("Heineken 33cl", "beer"), _candidate("Sancerre Blanc", "white_wine")]

    resolve_duplicates(candidates, snapshot)

    assert all(c.is_new for c in candidates)
