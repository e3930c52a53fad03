"""
Test unitari per parsing risposte del servizio di estrazione.
"""
from ingest.reply_parser import fallback_records, parse_reply, repair_json


class TestJsonTiers:
    """Test per i livelli JSON."""

    def test_clean_array(self):
        outcome = parse_reply('[{"name": "Chablis", "quantity": 6, "purchase_price": 22.0}]')

        assert outcome.status == "parsed"
        assert outcome.records == [{"name": "Chablis", "quantity": 6, "purchase_price": 22.0}]
        assert outcome.degraded is False

    def test_code_fence_and_prose(self):
        """Testo prima/dopo e code fence."""
        reply = (
            "Voici les produits extraits :\n"
            "```json\n"
            '[{"nom": "Sancerre", "quantite": 12}]\n'
            "```\n"
            "N'hésitez pas si besoin."
        )
        outcome = parse_reply(reply)

        assert outcome.status == "parsed"
        assert outcome.records[0]["nom"] == "Sancerre"

    def test_trailing_commas_and_bare_keys(self):
        reply = '[{name: "Gin Tonic", quantity: 3, purchase_price: 12.5,},]'
        outcome = parse_reply(reply)

        assert outcome.status == "parsed"
        assert outcome.records == [{"name": "Gin Tonic", "quantity": 3, "purchase_price": 12.5}]

    def test_lone_object_wrapped(self):
        outcome = parse_reply('Risultato: {"name": "Heineken", "quantity": 24}')

        assert outcome.status == "parsed"
        assert outcome.records == [{"name": "Heineken", "quantity": 24}]

    def test_container_object(self):
        """Oggetto con lista prodotti (response_format json_object)."""
        outcome = parse_reply('{"products": [{"name": "A"}, {"name": "B"}]}')

        assert outcome.status == "parsed"
        assert [r["name"] for r in outcome.records] == ["A", "B"]

    def test_brackets_inside_strings(self):
        reply = 'ok [{"name": "Cuvée [Réserve]", "description": "note {x}"}] fine'
        outcome = parse_reply(reply)

        assert outcome.status == "parsed"
        assert outcome.records[0]["name"] == "Cuvée [Réserve]"

    def test_control_characters(self):
        reply = '[{"name": "Ros\x07é", "quantity": 2}]'
        outcome = parse_reply(reply)

        assert outcome.status == "parsed"
        assert outcome.records[0]["quantity"] == 2

    def test_repair_json(self):
        assert repair_json('{a: 1, "b": [1, 2,],}') == '{"a": 1, "b": [1, 2]}'


class TestFallback:
    """Test per estrazione di secours."""

    def test_fallback_lines(self):
        """JSON irrecuperabile → righe regex con confidenza 50."""
        reply = (
            "Je n'ai pas pu formater en JSON {\n"
            "Bordeaux Rouge 2020: 12 bouteilles à 15.50 €\n"
            "Vodka Absolut: 3 x 18,90\n"
        )
        outcome = parse_reply(reply)

        assert outcome.status == "fallback_parsed"
        assert outcome.degraded is True
        assert outcome.records[0] == {
            "name": "Bordeaux Rouge 2020",
            "quantity": 12,
            "purchase_price": 15.5,
            "confidence": 50,
        }
        assert outcome.records[1]["purchase_price"] == 18.9
        assert all(r["confidence"] == 50 for r in outcome.records)

    def test_fallback_ignores_json_fragments(self):
        records = fallback_records('{"name": "X",\n"quantity": 12,\n')
        assert records == []

    def test_unrecoverable(self):
        outcome = parse_reply("Désolé, je ne peux pas traiter ce document.")

        assert outcome.status == "unrecoverable"
        assert outcome.records == []
        assert outcome.error

    def test_empty_reply(self):
        assert parse_reply("").status == "unrecoverable"
        assert parse_reply(None).status == "unrecoverable"
