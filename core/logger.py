"""
Logging per import-processor.

- console colorata con colorlog
- contesto richiesta (user_id, correlation_id) propagato con contextvars
- righe JSON per gli eventi della pipeline (stage, sessione, conteggi, esito)
"""
import contextvars
import json
import logging
import sys
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import colorlog

_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('import_request_context', default={})

_LOG_COLORS = {
    'DEBUG': 'white',
    'INFO': 'blue',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Librerie troppo verbose a livello INFO
_QUIET_LOGGERS = ('httpx', 'httpcore', 'openai', 'multipart', 'PIL', 'aiosqlite')

# Ordine dei campi evento nelle righe JSON
_EVENT_FIELDS = (
    'correlation_id', 'user_id', 'session_id', 'stage', 'file_name', 'kind',
    'rows_total', 'candidates', 'elapsed_sec', 'decision',
)

_event_logger = logging.getLogger("import_processor.events")


def setup_colored_logging(service_name: str = "processor", level: int = logging.INFO) -> logging.Logger:
    """
    Configura il root logger con output colorato su stdout.

    Args:
        service_name: Etichetta del servizio in ogni riga
        level: Livello minimo del root logger
    """
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(colorlog.ColoredFormatter(
        f'%(log_color)s%(asctime)s [%(levelname)s]%(reset)s %(cyan)s{service_name}%(reset)s '
        f'%(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        log_colors=_LOG_COLORS,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root_logger


def set_request_context(user_id: Optional[str] = None, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Associa user_id e correlation_id (generato se assente) alla richiesta corrente."""
    context = {"correlation_id": correlation_id or str(uuid.uuid4())}
    if user_id is not None:
        context["user_id"] = user_id
    _request_context.set(context)
    return context


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _emit(level: str, message: str) -> None:
    log_func = getattr(_event_logger, level.lower(), _event_logger.info)
    log_func(message)


def log_with_context(level: str, message: str, **extra):
    """Log testuale preceduto da [correlation_id=...] [user_id=...] se noti."""
    ctx = {**get_request_context(), **{k: v for k, v in extra.items() if v is not None}}
    prefix = "".join(
        f"[{key}={ctx[key]}] " for key in ("correlation_id", "user_id") if ctx.get(key)
    )
    _emit(level, prefix + message)


def log_json(
    level: str,
    message: str,
    user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    stage: Optional[str] = None,
    session_id: Optional[str] = None,
    file_name: Optional[str] = None,
    kind: Optional[str] = None,
    rows_total: Optional[int] = None,
    candidates: Optional[int] = None,
    elapsed_sec: Optional[float] = None,
    decision: Optional[str] = None,
    **extra
):
    """
    Evento pipeline come riga JSON.

    user_id e correlation_id, se non passati, vengono presi dal contesto
    richiesta. I campi None sono omessi; **extra è accodato così com'è.

    Args:
        stage: reader, extract, validate, gate, preview, commit
        decision: previewed, committed, failed
    """
    ctx = get_request_context()
    fields = {
        'correlation_id': correlation_id or ctx.get("correlation_id"),
        'user_id': user_id or ctx.get("user_id"),
        'session_id': session_id,
        'stage': stage,
        'file_name': file_name,
        'kind': kind,
        'rows_total': rows_total,
        'candidates': candidates,
        'elapsed_sec': round(elapsed_sec, 3) if elapsed_sec is not None else None,
        'decision': decision,
    }

    log_data: Dict[str, Any] = {
        "timestamp": datetime.utcnow().isoformat(),
        "level": level.upper(),
        "message": message,
    }
    log_data.update((key, fields[key]) for key in _EVENT_FIELDS if fields[key] is not None)
    log_data.update(extra)

    _emit(level, json.dumps(log_data, ensure_ascii=False, default=str))
