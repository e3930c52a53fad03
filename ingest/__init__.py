"""
Ingest pipeline per import prodotti (vini, spirits, birre, soft).

Questo modulo contiene la pipeline di import:
- Gate + Reader: tipo documento e righe grezze (CSV/Excel/testo/OCR)
- Estrazione: servizio IA con parsing tollerante, o mappatura diretta delle colonne
- Normalizzazione, duplicati e gate di confidenza
- Pipeline: sessione di import, preview e commit
"""
