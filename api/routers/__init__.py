"""
Routers per API import-processor.

Moduli:
- imports: preview, commit, scarto, import automatico e storico (/imports/*)
"""
from . import imports

__all__ = ["imports"]
