"""
Test unitari per normalization.
"""
import copy

import pytest

from ingest.normalization import (
    ERR_CATEGORY,
    ERR_NAME,
    ERR_PURCHASE_PRICE,
    ERR_QUANTITY,
    confidence_to_percent,
    normalize_candidate,
    normalize_category,
    normalize_confidence,
    normalize_name,
    normalize_unit,
    parse_number,
)
from ingest.types import CandidateRecord


def _candidate(**kwargs):
    defaults = {"source_document_id": "doc-1", "name": "Chablis", "category": "vin blanc",
                "quantity": "6", "purchase_price": "22,00"}
    defaults.update(kwargs)
    return CandidateRecord(**defaults)


class TestNormalizeName:
    """Test per normalize_name."""

    def test_whitespace_and_punctuation(self):
        assert normalize_name("  - Château   Margaux 2015 ;  ") == "Château Margaux 2015"

    def test_keeps_closing_parenthesis(self):
        assert normalize_name("Dom Pérignon (magnum).") == "Dom Pérignon (magnum)"

    def test_max_length(self):
        assert len(normalize_name("A" * 250)) == 100

    def test_empty(self):
        assert normalize_name(None) == ""
        assert normalize_name("  ") == ""


class TestParseNumber:
    """Test per parse_number."""

    @pytest.mark.parametrize("value,expected", [
        ("15.50", 15.5),
        ("15,50", 15.5),
        ("1.234,50", 1234.5),
        ("1,234.50", 1234.5),
        ("12 bouteilles", 12.0),
        ("8,90 €", 8.9),
        ("1 200,00", 1200.0),
        (12, 12.0),
        ("-3", 0.0),
        ("abc", 0.0),
        (None, 0.0),
        (float("nan"), 0.0),
    ])
    def test_values(self, value, expected):
        assert parse_number(value) == expected


class TestCategoryAndUnit:
    """Test per categoria e unità."""

    @pytest.mark.parametrize("value,expected", [
        ("vins-rouge", "red_wine"),
        ("Vin Rouge", "red_wine"),
        ("rosé", "rose_wine"),
        ("Champagne", "champagne"),
        ("spiritueux premium", "spirits"),
        ("Bière", "beer"),
        ("vini sfusi", "other"),
        ("red_wine", "red_wine"),
    ])
    def test_category(self, value, expected):
        assert normalize_category(value) == expected

    def test_missing_category(self):
        assert normalize_category(None) is None
        assert normalize_category("") is None

    @pytest.mark.parametrize("value,expected", [
        ("bouteilles", "bottle"),
        ("L", "liter"),
        ("cl", "cl"),
        ("canettes", "piece"),
        ("cartons", "unit"),
        (None, "unit"),
    ])
    def test_unit(self, value, expected):
        assert normalize_unit(value) == expected


class TestNormalizeConfidence:
    """Test per normalize_confidence."""

    def test_clamped(self):
        assert normalize_confidence(150) == 100.0
        assert normalize_confidence(-5) == 0.0

    def test_fraction_not_rescaled(self):
        assert normalize_confidence(0.85) == 0.85

    def test_fraction_to_percent(self):
        assert confidence_to_percent(0.85) == pytest.approx(85.0)
        assert confidence_to_percent("0,9") == pytest.approx(90.0)
        assert confidence_to_percent(42) == 42
        assert confidence_to_percent(None) is None

    def test_default_when_missing(self):
        assert normalize_confidence(None, 80.0) == 80.0
        assert normalize_confidence("n/a", 75.0) == 75.0


class TestNormalizeCandidate:
    """Test per normalize_candidate."""

    def test_full_record(self):
        candidate = normalize_candidate(_candidate(unit="btl", sale_price="", confidence="90"))

        assert candidate.name == "Chablis"
        assert candidate.category == "white_wine"
        assert candidate.quantity == 6.0
        assert candidate.purchase_price == 22.0
        assert candidate.sale_price is None
        assert candidate.unit == "bottle"
        assert candidate.confidence == pytest.approx(90.0)
        assert candidate.validation_errors == []

    def test_category_inferred_from_name(self):
        candidate = normalize_candidate(_candidate(name="Gin Hendrick's", category=None))
        assert candidate.category == "spirits"
        assert ERR_CATEGORY not in candidate.validation_errors

    def test_invalid_record_annotated_not_dropped(self):
        candidate = normalize_candidate(_candidate(name="X", category=None, quantity="0", purchase_price="gratuit"))

        assert candidate.category == "other"
        assert set(candidate.validation_errors) == {ERR_NAME, ERR_CATEGORY, ERR_QUANTITY, ERR_PURCHASE_PRICE}

    def test_idempotent(self):
        """Rinormalizzare un record normalizzato non cambia nulla."""
        for raw in (
            _candidate(name="  Chablis 1er Cru. ", unit="bouteilles", confidence=None),
            _candidate(name="X", category=None, quantity="-2", purchase_price=None, sale_price="30,5"),
            _candidate(confidence=0.005),
            _candidate(confidence="0.5"),
        ):
            once = normalize_candidate(raw, default_confidence=80.0)
            snapshot = copy.deepcopy(once)
            twice = normalize_candidate(once, default_confidence=80.0)

            assert twice == snapshot

    def test_confidence_range(self):
        for value in (None, -10, 0.5, 42, 250, "abc"):
            candidate = normalize_candidate(_candidate(confidence=value), default_confidence=80.0)
            assert 0.0 <= candidate.confidence <= 100.0
