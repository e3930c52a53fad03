"""
Eccezioni della pipeline di import prodotti.

Ogni errore porta un `code` stabile (usato in log, storico e risposte API)
e un dict `details` con il contesto utile per la diagnosi.
"""
from typing import Any, Dict, Optional


class ImportPipelineError(Exception):
    """Base per tutti gli errori della pipeline di import."""

    code = "IMPORT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class UnsupportedFormat(ImportPipelineError):
    """Tipo documento non riconoscibile: fallisce solo quel documento."""

    code = "UNSUPPORTED_FORMAT"


class ExtractionUnavailable(ImportPipelineError):
    """L'adapter di estrazione testo (OCR) non ha prodotto testo."""

    code = "EXTRACTION_UNAVAILABLE"


class ServiceError(ImportPipelineError):
    """Il servizio di estrazione/ragionamento esterno ha fallito o è andato in timeout."""

    code = "SERVICE_ERROR"


class MalformedExtractionReply(ImportPipelineError):
    """
    Risposta del servizio non interpretabile.

    Usata solo internamente dal parser: verso l'esterno diventa un
    ParseOutcome degradato, mai un'eccezione.
    """

    code = "MALFORMED_EXTRACTION_REPLY"


class InsufficientConfidence(ImportPipelineError):
    """Modalità automatica: nessun candidato supera la soglia di confidenza."""

    code = "INSUFFICIENT_CONFIDENCE"

    def __init__(self, threshold: float, total: int):
        self.threshold = threshold
        self.total = total
        super().__init__(
            f"Nessun prodotto con confidenza >= {threshold:g}% su {total} estratti. "
            f"Import automatico annullato.",
            details={"threshold": threshold, "total": total},
        )


class RecordValidationError(ImportPipelineError):
    """Candidato non inseribile in inventario (nome vuoto, categoria o unità fuori enum)."""

    code = "VALIDATION_ERROR"


class InvalidSessionTransition(ImportPipelineError):
    """Transizione di stato non ammessa per una sessione di import."""

    code = "INVALID_SESSION_TRANSITION"


class SessionNotFound(ImportPipelineError):
    """Sessione di preview inesistente, già confermata o scartata."""

    code = "SESSION_NOT_FOUND"
