"""
Lettura di fogli di calcolo (XLSX/XLS/ODS).

Viene letto lo sheet con più righe non vuote; le altre schede (note,
legende, riepiloghi) sono ignorate.
"""
import io
import logging
from typing import Any, Dict, List, Tuple

import pandas as pd

from ingest.csv_parser import frame_to_rows

logger = logging.getLogger(__name__)


def parse_excel(file_content: bytes) -> Tuple[List[List[str]], Dict[str, Any]]:
    """
    Legge lo sheet più popolato, senza interpretare l'intestazione.

    Returns:
        Tuple (righe, info) con info: sheet_name, sheet_index, total_sheets, rows, columns

    Raises:
        ValueError: file non apribile o senza sheet leggibili
    """
    try:
        workbook = pd.ExcelFile(io.BytesIO(file_content))
    except Exception as e:
        logger.error(f"[EXCEL_PARSER] File non apribile: {e}")
        raise ValueError(f"Errore parsing Excel: {e}") from e

    sheets = {}
    for sheet_name in workbook.sheet_names:
        try:
            df = pd.read_excel(workbook, sheet_name=sheet_name, header=None, dtype=str)
        except ValueError as e:
            logger.warning(f"[EXCEL_PARSER] Sheet '{sheet_name}' saltato: {e}")
            continue
        sheets[sheet_name] = df.dropna(how='all').dropna(axis=1, how='all')

    if not sheets:
        raise ValueError("Nessun sheet valido trovato nel file Excel")

    # max() tiene il primo a parità di righe
    sheet_name = max(sheets, key=lambda name: len(sheets[name]))
    df = sheets[sheet_name]
    rows = frame_to_rows(df)

    logger.info(
        f"[EXCEL_PARSER] Sheet '{sheet_name}' scelto tra {len(workbook.sheet_names)}: "
        f"{len(rows)} righe x {len(df.columns)} colonne"
    )
    return rows, {
        'sheet_name': sheet_name,
        'sheet_index': workbook.sheet_names.index(sheet_name),
        'total_sheets': len(workbook.sheet_names),
        'rows': len(rows),
        'columns': len(df.columns),
    }
