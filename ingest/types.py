from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from ingest.errors import InvalidSessionTransition

DocumentKind = Literal["spreadsheet", "delimited", "pdf", "image", "text", "unknown"]
SourceKind = Literal["file", "text"]
GateMode = Literal["preview", "automatic"]
ParseStatus = Literal["parsed", "fallback_parsed", "unrecoverable"]
MovementType = Literal["in", "out", "adjust"]
SessionStatus = Literal[
    "initialized", "extracted", "validated", "previewed", "committed", "closed", "failed"
]

CATEGORIES: Tuple[str, ...] = (
    "red_wine",
    "white_wine",
    "rose_wine",
    "champagne",
    "spirits",
    "liqueur",
    "beer",
    "soft",
    "other",
)

UNITS: Tuple[str, ...] = ("bottle", "liter", "cl", "piece", "unit")

# Transizioni ammesse: la sessione avanza in modo monotono
SESSION_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "initialized": ("extracted", "failed"),
    "extracted": ("validated", "failed"),
    "validated": ("previewed", "committed", "failed"),
    "previewed": ("committed", "closed", "failed"),
    "committed": ("closed",),
    "closed": (),
    "failed": (),
}


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RawDocument:
    """Documento caricato, immutabile, scartato a fine sessione."""

    file_name: str
    content: bytes
    mime_hint: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def byte_size(self) -> int:
        return len(self.content)


@dataclass
class ReadResult:
    document_id: str
    file_name: str
    kind: DocumentKind
    rows: List[List[str]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    text: Optional[str] = None
    header: Optional[List[str]] = None


@dataclass
class CandidateRecord:
    source_document_id: Optional[str]
    name: str
    category: Optional[str] = None
    quantity: Any = 0.0
    unit: Optional[str] = None
    purchase_price: Any = 0.0
    sale_price: Any = None
    supplier: Optional[str] = None
    confidence: Any = None
    is_new: bool = True
    matched_inventory_id: Optional[str] = None
    description: Optional[str] = None
    source: SourceKind = "file"
    validation_errors: List[str] = field(default_factory=list)
    low_confidence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_document_id": self.source_document_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "unit": self.unit,
            "purchase_price": self.purchase_price,
            "sale_price": self.sale_price,
            "supplier": self.supplier,
            "confidence": self.confidence,
            "is_new": self.is_new,
            "matched_inventory_id": self.matched_inventory_id,
            "description": self.description,
            "validation_errors": list(self.validation_errors),
            "low_confidence": self.low_confidence,
        }


@dataclass(frozen=True)
class InventoryItem:
    id: str
    name: str
    category: str
    quantity: float = 0.0
    unit: str = "unit"
    purchase_price: float = 0.0
    sale_price: Optional[float] = None
    alert_threshold: float = 0.0
    supplier: Optional[str] = None


@dataclass(frozen=True)
class InventorySnapshot:
    """Fotografia dell'inventario presa una sola volta a inizio sessione."""

    items: Tuple[InventoryItem, ...] = ()
    taken_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def of(cls, items: List[InventoryItem]) -> "InventorySnapshot":
        return cls(items=tuple(items))

    @property
    def categories(self) -> List[str]:
        return sorted({item.category for item in self.items})


@dataclass
class SessionSummary:
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class ImportSession:
    user_id: str
    source_kind: SourceKind = "file"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)
    source_document_ids: List[str] = field(default_factory=list)
    file_names: List[str] = field(default_factory=list)
    text_input: Optional[str] = None
    status: SessionStatus = "initialized"
    candidate_records: List[CandidateRecord] = field(default_factory=list)
    summary: SessionSummary = field(default_factory=SessionSummary)
    rollback_available: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)
    parse_outcomes: Dict[str, str] = field(default_factory=dict)
    history_id: Optional[str] = None

    def transition(self, new_status: SessionStatus) -> None:
        allowed = SESSION_TRANSITIONS.get(self.status, ())
        if new_status not in allowed:
            raise InvalidSessionTransition(
                f"Transizione non ammessa: {self.status} -> {new_status}",
                details={"session_id": self.id, "from": self.status, "to": new_status},
            )
        self.status = new_status

    def fail(self) -> None:
        if self.status not in ("closed", "failed", "committed"):
            self.status = "failed"

    def report_error(self, code: str, message: str, document: Optional[str] = None) -> None:
        self.errors.append({"code": code, "message": message, "document": document})
        self.summary.errors = len(self.errors)


@dataclass(frozen=True)
class MovementRecord:
    product_id: str
    type: MovementType
    quantity: float
    previous_quantity: float
    new_quantity: float
    reason: str
    session_id: str
    product_name: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ParseOutcome:
    """
    Esito tipizzato del parsing di una risposta del servizio di estrazione.

    - parsed: JSON recuperato (anche dopo pulizia)
    - fallback_parsed: JSON irrecuperabile, righe estratte via regex
    - unrecoverable: nessun record
    """

    status: ParseStatus
    records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status != "parsed"


@dataclass
class ImportPreview:
    session_id: str
    candidate_records: List[CandidateRecord]
    summary: Dict[str, int]
    alerts: List[Dict[str, Any]]
    suggestions: List[str]
    estimated_impact: Dict[str, Any]
    analysis_log: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "candidate_records": [c.to_dict() for c in self.candidate_records],
            "summary": dict(self.summary),
            "alerts": list(self.alerts),
            "suggestions": list(self.suggestions),
            "estimated_impact": dict(self.estimated_impact),
            "analysis_log": self.analysis_log,
        }


@dataclass
class CommitResult:
    success: bool
    added_count: int
    updated_count: int
    skipped_count: int
    session_id: str
    error: Optional[str] = None
    movements: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "added_count": self.added_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "session_id": self.session_id,
            "error": self.error,
        }
