"""
Core functionality per import-processor.

Questo modulo contiene:
- Configurazione (config.py)
- Database (database.py)
- Store SQL inventario/movimenti (inventory_store.py) e storico (history.py)
- Logging (logger.py)
"""
