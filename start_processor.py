"""
Avvio del servizio import-processor con uvicorn.

Un solo worker: le sessioni in preview vivono nella memoria del processo
e un commit deve arrivare allo stesso processo che ha generato la preview.
"""
import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

# Logging configurato prima degli import che creano logger
from core.logger import setup_colored_logging  # noqa: E402

setup_colored_logging("processor")

from core.config import get_config  # noqa: E402

logger = logging.getLogger(__name__)


def main():
    config = get_config()
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(
        f"[STARTUP] {config.processor_name} v{config.processor_version} su {host}:{config.port} "
        f"(ocr={'on' if config.ocr_enabled else 'off'}, llm={'on' if config.llm_available else 'off'})"
    )
    uvicorn.run(
        "api.main:app",
        host=host,
        port=config.port,
        workers=1,
        log_level="info",
        use_colors=False,  # colori gestiti da colorlog
    )


if __name__ == "__main__":
    main()
