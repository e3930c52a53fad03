"""
Test unitari per gate (riconoscimento formato e intestazione).
"""
import pytest

from ingest.errors import UnsupportedFormat
from ingest.gate import detect_header, detect_kind, require_kind, split_header


class TestDetectKind:
    """Test per riconoscimento tipo documento."""

    @pytest.mark.parametrize("file_name,expected", [
        ("stock.xlsx", "spreadsheet"),
        ("stock.XLS", "spreadsheet"),
        ("stock.ods", "spreadsheet"),
        ("stock.csv", "delimited"),
        ("stock.tsv", "delimited"),
        ("facture.pdf", "pdf"),
        ("photo.jpeg", "image"),
        ("scan.png", "image"),
        ("notes.txt", "text"),
    ])
    def test_extension(self, file_name, expected):
        """Estensione riconosciuta."""
        assert detect_kind(file_name) == expected

    def test_extension_has_priority_over_mime(self):
        """L'estensione vince sul content-type dichiarato."""
        assert detect_kind("stock.csv", "application/pdf") == "delimited"

    def test_mime_fallback(self):
        """Senza estensione utile si usa il content-type."""
        assert detect_kind("upload", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet") == "spreadsheet"
        assert detect_kind("upload.bin", "image/png") == "image"
        assert detect_kind("upload", "text/csv; charset=utf-8") == "delimited"

    def test_unknown(self):
        """Tipo non riconosciuto."""
        assert detect_kind("document.docx") == "unknown"
        assert detect_kind("noext") == "unknown"

    def test_require_kind_raises(self):
        """require_kind solleva UnsupportedFormat."""
        with pytest.raises(UnsupportedFormat, match="Formato file non supportato"):
            require_kind("document.docx", "application/msword")


class TestHeaderDetection:
    """Test per riconoscimento riga di intestazione."""

    def test_french_header(self):
        assert detect_header(["Nom", "Quantité", "Prix"]) is True

    def test_english_header(self):
        assert detect_header(["Product Name", "Qty", "Unit Price"]) is True

    def test_data_row(self):
        assert detect_header(["Bordeaux Rouge 2020", "12", "15.50"]) is False

    def test_empty_row(self):
        assert detect_header([]) is False
        assert detect_header(None) is False

    def test_split_header(self):
        """La riga 0 viene esclusa dai dati solo se è intestazione."""
        rows = [["Nom", "Quantité"], ["Chablis", "6"]]
        header, data = split_header(rows)
        assert header == ["Nom", "Quantité"]
        assert data == [["Chablis", "6"]]

        header, data = split_header([["Chablis", "6"]])
        assert header is None
        assert data == [["Chablis", "6"]]
