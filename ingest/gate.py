"""
Gate - Riconoscimento formato documento.

Determina il tipo di documento prima dall'estensione, poi dal content-type
dichiarato. Un tipo non riconosciuto fa fallire solo quel documento.
"""
import logging
from typing import List, Optional, Sequence

from ingest.errors import UnsupportedFormat
from ingest.types import DocumentKind

logger = logging.getLogger(__name__)

EXTENSION_KINDS = {
    'xlsx': 'spreadsheet',
    'xls': 'spreadsheet',
    'ods': 'spreadsheet',
    'csv': 'delimited',
    'tsv': 'delimited',
    'pdf': 'pdf',
    'jpg': 'image',
    'jpeg': 'image',
    'png': 'image',
    'bmp': 'image',
    'tif': 'image',
    'tiff': 'image',
    'webp': 'image',
    'txt': 'text',
}

# Parole chiave di intestazione (inglese, francese, italiano)
HEADER_KEYWORDS = (
    'name', 'quantity', 'price', 'category', 'supplier',
    'nom', 'produit', 'quantité', 'quantite', 'prix', 'catégorie', 'categorie', 'fournisseur',
    'nome', 'quantità', 'prezzo', 'fornitore',
)


def get_extension(file_name: str) -> Optional[str]:
    if not file_name or '.' not in file_name:
        return None
    return file_name.rsplit('.', 1)[-1].lower().strip()


def kind_from_mime(mime_hint: Optional[str]) -> DocumentKind:
    if not mime_hint:
        return 'unknown'
    mime = mime_hint.lower().split(';', 1)[0].strip()

    if 'excel' in mime or 'spreadsheet' in mime:
        return 'spreadsheet'
    if mime in ('text/csv', 'text/tab-separated-values', 'application/csv'):
        return 'delimited'
    if mime == 'application/pdf':
        return 'pdf'
    if mime.startswith('image/'):
        return 'image'
    if mime == 'text/plain':
        return 'text'
    return 'unknown'


def detect_kind(file_name: str, mime_hint: Optional[str] = None) -> DocumentKind:
    """
    Classifica un documento.

    Args:
        file_name: Nome file (l'estensione ha la precedenza)
        mime_hint: Content-type dichiarato dal client (opzionale)

    Returns:
        Tipo documento, 'unknown' se non riconosciuto
    """
    ext = get_extension(file_name)
    if ext in EXTENSION_KINDS:
        kind = EXTENSION_KINDS[ext]
        logger.info(f"[GATE] File {file_name} riconosciuto da estensione: {kind}")
        return kind

    kind = kind_from_mime(mime_hint)
    if kind != 'unknown':
        logger.info(f"[GATE] File {file_name} riconosciuto da content-type {mime_hint}: {kind}")
    else:
        logger.warning(f"[GATE] File {file_name} non riconosciuto (ext={ext}, mime={mime_hint})")
    return kind


def require_kind(file_name: str, mime_hint: Optional[str] = None) -> DocumentKind:
    """Come detect_kind, ma solleva UnsupportedFormat per i tipi non riconosciuti."""
    kind = detect_kind(file_name, mime_hint)
    if kind == 'unknown':
        raise UnsupportedFormat(
            f"Formato file non supportato: {file_name}. "
            f"Supportati: XLSX, XLS, ODS, CSV, TSV, PDF, immagini, TXT",
            details={"file_name": file_name, "mime_hint": mime_hint},
        )
    return kind


def detect_header(first_row: Optional[Sequence]) -> bool:
    """
    Verifica se la prima riga è un'intestazione.

    Concatena le celle in minuscolo e cerca una delle parole chiave.
    """
    if not first_row:
        return False
    text = ' '.join(str(cell) for cell in first_row if cell is not None).lower()
    return any(keyword in text for keyword in HEADER_KEYWORDS)


def split_header(rows: List[List[str]]):
    """Ritorna (header, righe dati): header None se la riga 0 non è un'intestazione."""
    if rows and detect_header(rows[0]):
        return rows[0], rows[1:]
    return None, rows
