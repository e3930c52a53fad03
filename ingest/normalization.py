"""
Normalization dei candidati estratti.

Trasformazioni deterministiche e idempotenti campo per campo:
nome, quantità/prezzi, categoria e unità (tabelle sinonimi), confidenza.
I record con campi obbligatori non validi vengono annotati, mai scartati.
"""
import logging
import math
import re
import unicodedata
from typing import Any, List, Optional

from ingest.types import CATEGORIES, UNITS, CandidateRecord

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100

ERR_NAME = "Nome prodotto mancante o troppo corto"
ERR_CATEGORY = "Categoria mancante"
ERR_QUANTITY = "Quantità non valida"
ERR_PURCHASE_PRICE = "Prezzo d'acquisto mancante o non valido"

# Sinonimi categoria (chiavi già canonicalizzate: minuscolo, senza accenti, spazi singoli)
CATEGORY_SYNONYMS = {
    'red_wine': [
        'red wine', 'red', 'vins rouge', 'vin rouge', 'vins rouges', 'rouge', 'rosso', 'vino rosso',
    ],
    'white_wine': [
        'white wine', 'white', 'vins blanc', 'vin blanc', 'vins blancs', 'blanc', 'bianco', 'vino bianco',
    ],
    'rose_wine': [
        'rose wine', 'rose', 'vins rose', 'vin rose', 'vins roses', 'rosato', 'vino rosato',
    ],
    'champagne': [
        'champagne', 'sparkling', 'sparkling wine', 'mousseux', 'vin mousseux', 'cremant', 'spumante', 'prosecco',
    ],
    'spirits': [
        'spirits', 'spirit', 'spiritueux', 'spiritueuse', 'alcool fort', 'distillato', 'distillati', 'superalcolici',
    ],
    'liqueur': ['liqueur', 'liqueurs', 'liquore', 'liquori', 'amaro'],
    'beer': ['beer', 'beers', 'biere', 'bieres', 'birra', 'birre'],
    'soft': [
        'soft', 'softs', 'soft drink', 'soft drinks', 'soda', 'sodas', 'boisson', 'boissons',
        'sans alcool', 'analcolico', 'analcolici', 'bibita', 'bibite', 'jus',
    ],
    'other': ['other', 'autre', 'autres', 'altro', 'divers'],
}

# Parole chiave nel nome prodotto per dedurre una categoria mancante (ordine = priorità)
NAME_CATEGORY_KEYWORDS = [
    ('champagne', ['champagne', 'brut', 'cremant', 'prosecco', 'spumante', 'cava']),
    ('spirits', ['whisky', 'whiskey', 'gin', 'vodka', 'rhum', 'rum', 'cognac', 'armagnac',
                 'tequila', 'mezcal', 'calvados', 'grappa', 'pastis']),
    ('liqueur', ['liqueur', 'amaretto', 'limoncello', 'cointreau', 'chartreuse', 'baileys']),
    ('beer', ['biere', 'beer', 'birra', 'heineken', 'ipa', 'lager', 'stout', 'leffe']),
    ('soft', ['coca', 'cola', 'perrier', 'soda', 'limonade', 'jus', 'schweppes', 'tonic', 'orangina']),
    ('rose_wine', ['rose', 'rosato']),
    ('white_wine', ['blanc', 'chardonnay', 'chablis', 'sancerre', 'riesling', 'sauvignon', 'muscadet', 'bianco']),
    ('red_wine', ['rouge', 'bordeaux', 'merlot', 'cabernet', 'syrah', 'pinot noir', 'beaujolais',
                  'chianti', 'barolo', 'rosso']),
]

UNIT_SYNONYMS = {
    'bottle': ['bottle', 'bottles', 'bouteille', 'bouteilles', 'btl', 'bt', 'btle', 'bout', 'bottiglia', 'bottiglie'],
    'liter': ['liter', 'liters', 'litre', 'litres', 'l', 'lt', 'litro', 'litri'],
    'cl': ['cl', 'centilitre', 'centilitres', 'centiliter', 'centiliters'],
    'piece': ['piece', 'pieces', 'pc', 'pcs', 'pz', 'pezzo', 'pezzi', 'canette', 'canettes', 'can', 'cans'],
    'unit': ['unit', 'units', 'unite', 'unites', 'u', 'unita'],
}


def _strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def canonical_token(value: Any) -> str:
    """Minuscolo, senza accenti, separatori -/_ come spazi, spazi singoli."""
    text = _strip_accents(str(value).lower())
    text = re.sub(r"[-_/]+", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    return " ".join(text.split())


def _build_lookup(synonyms):
    lookup = {}
    for standard, variants in synonyms.items():
        lookup[canonical_token(standard)] = standard
        for variant in variants:
            lookup[canonical_token(variant)] = standard
    return lookup


_CATEGORY_LOOKUP = _build_lookup(CATEGORY_SYNONYMS)
_UNIT_LOOKUP = _build_lookup(UNIT_SYNONYMS)


def is_na(value: Any) -> bool:
    """True se valore è None, NaN o stringa vuota/placeholder."""
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, str):
        return value.strip() == '' or value.strip().lower() in ['nan', 'none', 'null', 'n/a', 'na', '-']
    return False


def _is_edge_char(ch: str, trailing: bool) -> bool:
    if ch.isalnum():
        return False
    # Parentesi chiuse ammesse in coda: "Château X (magnum)"
    if trailing and ch in ')]':
        return False
    return True


def normalize_name(value: Any) -> str:
    """
    Pulisce il nome prodotto: trim, spazi collassati, punteggiatura ai bordi
    rimossa, massimo 100 caratteri.
    """
    if is_na(value):
        return ''
    text = " ".join(str(value).split())

    start = 0
    while start < len(text) and _is_edge_char(text[start], trailing=False):
        start += 1
    text = text[start:]

    text = text[:MAX_NAME_LENGTH]

    end = len(text)
    while end > 0 and _is_edge_char(text[end - 1], trailing=True):
        end -= 1
    return text[:end]


_NUMBER_TOKEN = re.compile(r"-?\d[\d\s.,']*")


def parse_number(value: Any) -> float:
    """
    Converte un valore in float non negativo.

    Gestisce virgola decimale (8,50), separatori migliaia (1.234,50 / 1,234.50)
    e testo attorno al numero ("12 bouteilles", "15€"). Non interpretabile → 0.
    """
    if is_na(value) or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return 0.0
        return max(0.0, number)

    match = _NUMBER_TOKEN.search(str(value).replace('\u00a0', ' '))
    if not match:
        return 0.0
    token = re.sub(r"[\s']", "", match.group()).rstrip('.,')
    negative = token.startswith('-')
    token = token.lstrip('-')

    if ',' in token and '.' in token:
        if token.rfind(',') > token.rfind('.'):
            token = token.replace('.', '').replace(',', '.')
        else:
            token = token.replace(',', '')
    elif ',' in token:
        head, _, tail = token.rpartition(',')
        token = head.replace(',', '') + '.' + tail
    elif token.count('.') > 1:
        head, _, tail = token.rpartition('.')
        token = head.replace('.', '') + '.' + tail

    try:
        number = float(token)
    except ValueError:
        return 0.0
    if negative or math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def normalize_optional_price(value: Any) -> Optional[float]:
    """Prezzo facoltativo: assente o nullo → None."""
    if is_na(value):
        return None
    number = parse_number(value)
    return number if number > 0 else None


def normalize_category(value: Any) -> Optional[str]:
    """
    Mappa la categoria sull'enum chiuso.

    Returns:
        Categoria standard, 'other' se non mappata, None se assente
    """
    if is_na(value):
        return None
    token = canonical_token(value)
    if not token:
        return None
    if token in _CATEGORY_LOOKUP:
        return _CATEGORY_LOOKUP[token]

    # Match per parola contenuta ("vin rouge bio", "spiritueux premium")
    words = token.split()
    for word in words:
        if word in _CATEGORY_LOOKUP and _CATEGORY_LOOKUP[word] != 'other':
            return _CATEGORY_LOOKUP[word]
    return 'other'


def infer_category_from_name(name: str) -> Optional[str]:
    """Deduce la categoria dalle parole chiave del nome, None se nessuna."""
    if not name:
        return None
    token = f" {canonical_token(name)} "
    for category, keywords in NAME_CATEGORY_KEYWORDS:
        if any(f" {keyword} " in token for keyword in keywords):
            return category
    return None


def normalize_unit(value: Any) -> str:
    """Mappa l'unità sull'enum chiuso, 'unit' se assente o non mappata."""
    if is_na(value):
        return 'unit'
    return _UNIT_LOOKUP.get(canonical_token(value), 'unit')


def confidence_to_percent(value: Any) -> Any:
    """
    Confidenza letta da una risposta: valori in (0, 1) sono probabilità e
    vengono portati in percentuale. Gli altri valori restano invariati.

    Va applicata una sola volta, in estrazione: la normalizzazione si
    limita a clampare.
    """
    if is_na(value) or isinstance(value, bool):
        return value
    number = float(value) if isinstance(value, (int, float)) else parse_number(value)
    if 0.0 < number < 1.0:
        return number * 100.0
    return value


def normalize_confidence(value: Any, default: float = 0.0) -> float:
    """Confidenza in [0, 100]; se assente vale default."""
    if is_na(value) or isinstance(value, bool):
        number = float(default)
    elif isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number):
            number = float(default)
    else:
        number = parse_number(value)
    return max(0.0, min(100.0, number))


def _clean_text(value: Any) -> Optional[str]:
    if is_na(value):
        return None
    text = " ".join(str(value).split())
    return text or None


def validate_candidate(candidate: CandidateRecord, category_missing: bool = False) -> List[str]:
    """Controlli sui campi obbligatori di un candidato già normalizzato."""
    errors = []
    if len(candidate.name or '') < 2:
        errors.append(ERR_NAME)
    if category_missing or candidate.category not in CATEGORIES:
        errors.append(ERR_CATEGORY)
    if not candidate.quantity or candidate.quantity <= 0:
        errors.append(ERR_QUANTITY)
    if not candidate.purchase_price or candidate.purchase_price <= 0:
        errors.append(ERR_PURCHASE_PRICE)
    return errors


def normalize_candidate(candidate: CandidateRecord, default_confidence: float = 0.0) -> CandidateRecord:
    """
    Normalizza un candidato in place e ne annota gli errori di validazione.

    Idempotente: rinormalizzare un record normalizzato non cambia nulla
    (gli errori già annotati vengono conservati senza duplicati).

    Args:
        candidate: Candidato prodotto dall'adapter di estrazione
        default_confidence: Confidenza da usare se assente

    Returns:
        Lo stesso candidato, normalizzato
    """
    candidate.name = normalize_name(candidate.name)

    category = normalize_category(candidate.category)
    category_missing = False
    if category is None:
        category = infer_category_from_name(candidate.name)
        if category is None:
            category_missing = True
            category = 'other'
    candidate.category = category

    candidate.unit = normalize_unit(candidate.unit)
    if candidate.unit not in UNITS:
        candidate.unit = 'unit'

    candidate.quantity = parse_number(candidate.quantity)
    candidate.purchase_price = parse_number(candidate.purchase_price)
    candidate.sale_price = normalize_optional_price(candidate.sale_price)
    candidate.supplier = _clean_text(candidate.supplier)
    candidate.description = _clean_text(candidate.description)
    candidate.confidence = normalize_confidence(candidate.confidence, default_confidence)

    errors = list(candidate.validation_errors)
    for error in validate_candidate(candidate, category_missing=category_missing):
        if error not in errors:
            errors.append(error)
    candidate.validation_errors = errors

    if errors:
        logger.debug(f"[NORMALIZATION] Candidato '{candidate.name}' annotato: {errors}")
    return candidate


def normalize_candidates(candidates: List[CandidateRecord], default_confidence: float = 0.0) -> List[CandidateRecord]:
    normalized = [normalize_candidate(c, default_confidence) for c in candidates]
    invalid = sum(1 for c in normalized if c.validation_errors)
    logger.info(
        f"[NORMALIZATION] {len(normalized)} candidati normalizzati, {invalid} con errori di validazione"
    )
    return normalized
