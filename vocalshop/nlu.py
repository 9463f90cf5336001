"""Rule-based French intent and slot extraction for shopping utterances.

The parser is deterministic and never raises: every slot it cannot find is
left as None. Alias tables are read-only mappings from a canonical term to
the surface forms accepted in normalized text.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .utils import normalize_text

SEARCH = "search"
ADD_TO_CART = "add_to_cart"

CLEAR_COMMAND = "clear"
CHECKOUT_COMMAND = "checkout"

COLOR_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "bleu": ("bleu", "bleue", "marine", "bleu marine"),
        "rouge": ("rouge",),
        "blanc": ("blanc", "blanche"),
        "noir": ("noir", "noire"),
        "beige": ("beige", "sable", "camel"),
        "vert": ("vert", "verte"),
        "gris": ("gris", "grise"),
        "rose": ("rose",),
        "jaune": ("jaune",),
        "marron": ("marron", "brun", "brune"),
    }
)

TYPE_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "chemise": ("chemise", "chemises"),
        "tee-shirt": ("t-shirt", "tee-shirt", "tee shirt", "tshirt", "t shirts", "t-shirts"),
        "robe": ("robe", "robes"),
        "veste": ("veste", "vestes", "blazer"),
        "pantalon": ("pantalon", "pantalons", "chino"),
        "baskets": ("baskets", "basket", "sneakers", "tennis", "chaussures"),
    }
)

SIZES: Tuple[str, ...] = (
    "XS", "S", "M", "L", "XL", "XXL",
    "38", "39", "40", "41", "42", "43", "44", "45", "46",
)

ADD_WORDS: Tuple[str, ...] = (
    "ajoute",
    "ajouter",
    "mets",
    "met",
    "mettre",
    "met au panier",
    "mettre au panier",
    "ajout",
    "panier",
)

NUMBER_WORDS: Mapping[str, int] = MappingProxyType(
    {"un": 1, "une": 1, "deux": 2, "trois": 3, "quatre": 4, "cinq": 5}
)

_AMOUNT = r"(\d{1,6}(?:[.,]\d{1,2})?)"
MAX_PRICE_RE = re.compile(r"(?:moins de|max(?:imum)?|<=?|inferieur a|jusqu'?a)\s*" + _AMOUNT)
RANGE_PRICE_RE = re.compile(r"entre\s*" + _AMOUNT + r"\s*(?:et|a)\s*" + _AMOUNT)
AROUND_PRICE_RE = re.compile(r"(?:autour de|vers|environ)\s*" + _AMOUNT)
NUMBER_WORD_RE = re.compile(r"\b(" + "|".join(NUMBER_WORDS.keys()) + r")\b")
DIGIT_QUANTITY_RE = re.compile(r"(?<![\d.,])\b([1-9])\b(?![.,]\d)")
CLEAR_RE = re.compile(r"\b(vide|vider)\s+(le\s+)?panier\b")
CHECKOUT_RE = re.compile(r"\b(valider?|payer?|paiement|checkout|caisse)\b")

_SIZE_PATTERNS = tuple(
    (size, re.compile(r"(?<![\w'])" + re.escape(size.lower()) + r"(?![\w'])")) for size in SIZES
)


@dataclass
class ParsedQuery:
    """Structured view of one utterance; derived fresh per message, never shared."""
    intent: str
    query_text: str
    product_type: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    quantity: int = 1
    raw: str = ""

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "ParsedQuery":
        known = {key: data[key] for key in cls.__dataclass_fields__ if key in data}
        return cls(**known)


def _to_amount(value: str) -> float:
    # Accept both "49,90" and "49.90".
    return float(value.replace(",", "."))


def detect_intent(text: str) -> str:
    """Purpose: Classify an utterance as add_to_cart or search.
    Inputs/Outputs: Input is raw or normalized text; output is SEARCH or ADD_TO_CART.
    Side Effects / State: None.
    Dependencies: ADD_WORDS, normalize_text.
    Failure Modes: Substring matching means "panier" alone is an add request.
    If Removed: Every utterance would be treated as a search.
    Testing Notes: "mets au panier la robe" -> add_to_cart; "robe rouge" -> search.
    """
    # First matching add word wins; there is no ambiguity resolution.
    normalized = normalize_text(text)
    if any(normalize_text(word) in normalized for word in ADD_WORDS):
        return ADD_TO_CART
    return SEARCH


def detect_cart_command(text: str) -> Optional[str]:
    """Purpose: Detect the explicit cart commands "vider le panier" and checkout words.
    Inputs/Outputs: Input is raw text; output is CLEAR_COMMAND, CHECKOUT_COMMAND or None.
    Side Effects / State: None.
    Dependencies: CLEAR_RE, CHECKOUT_RE.
    Failure Modes: None; unknown phrasing returns None and falls through to parsing.
    If Removed: "vide le panier" would be parsed as an add request.
    Testing Notes: "vide le panier" -> clear; "je veux payer" -> checkout.
    """
    # Clear is checked first since it also mentions "panier".
    normalized = normalize_text(text)
    if CLEAR_RE.search(normalized):
        return CLEAR_COMMAND
    if CHECKOUT_RE.search(normalized):
        return CHECKOUT_COMMAND
    return None


def match_from_aliases(text: str, aliases: Mapping[str, Tuple[str, ...]]) -> Optional[str]:
    """Return the first canonical term (table order) whose any surface form occurs in text."""
    normalized = normalize_text(text)
    for canonical, variants in aliases.items():
        for variant in variants:
            if normalize_text(variant) in normalized:
                return canonical
    return None


def extract_price_range(normalized: str, around_delta: float = 10.0) -> Tuple[Optional[float], Optional[float]]:
    """Purpose: Extract (price_min, price_max) from normalized text.
    Inputs/Outputs: Input is normalized text and the "around" half-width; output is a tuple.
    Side Effects / State: None.
    Dependencies: MAX_PRICE_RE, RANGE_PRICE_RE, AROUND_PRICE_RE.
    Failure Modes: Unparseable numbers are skipped; both bounds may be None.
    If Removed: Budget constraints are ignored by the matcher.
    Testing Notes: "moins de 60" -> (None, 60); "entre 50 et 80" -> (50, 80);
        "autour de 40" -> (30, 50).
    """
    # Upper bound first, then explicit range, then "around" if still no max.
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    match = MAX_PRICE_RE.search(normalized)
    if match:
        price_max = _to_amount(match.group(1))

    match = RANGE_PRICE_RE.search(normalized)
    if match:
        price_min = _to_amount(match.group(1))
        price_max = _to_amount(match.group(2))

    match = AROUND_PRICE_RE.search(normalized)
    if match and price_max is None:
        base = _to_amount(match.group(1))
        price_min = max(0.0, base - around_delta)
        price_max = base + around_delta

    return price_min, price_max


def extract_quantity(normalized: str) -> int:
    """Extract a 1-5 number word or the first standalone digit 1-9; defaults to 1."""
    match = NUMBER_WORD_RE.search(normalized)
    if match:
        return NUMBER_WORDS[match.group(1)]
    match = DIGIT_QUANTITY_RE.search(normalized)
    if match:
        return int(match.group(1))
    return 1


def detect_size(normalized: str) -> Optional[str]:
    # First size of the fixed list found as a whole word.
    for size, pattern in _SIZE_PATTERNS:
        if pattern.search(normalized):
            return size
    return None


def parse_user_utterance(utterance: str, around_delta: float = 10.0) -> ParsedQuery:
    """Purpose: Parse a raw utterance into intent and optional slots.
    Inputs/Outputs: Input is the raw utterance; output is a ParsedQuery.
    Side Effects / State: None; pure parser.
    Dependencies: normalize_text, detect_intent, extract_* helpers, alias tables.
    Failure Modes: Never raises; missing slots stay None and quantity defaults to 1.
    If Removed: The assistant cannot route or constrain searches.
    Testing Notes: "chemise bleue taille M à moins de 60 euros" ->
        product_type=chemise, color=bleu, size=M, price_max=60.
    """
    # Centralized slot extraction on the normalized text.
    raw = utterance or ""
    text = normalize_text(raw)
    price_min, price_max = extract_price_range(text, around_delta=around_delta)
    return ParsedQuery(
        intent=detect_intent(text),
        query_text=text,
        product_type=match_from_aliases(text, TYPE_ALIASES),
        color=match_from_aliases(text, COLOR_ALIASES),
        size=detect_size(text),
        price_min=price_min,
        price_max=price_max,
        quantity=extract_quantity(text),
        raw=raw,
    )


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".replace(".", ",")


def to_spoken_summary(parsed: ParsedQuery) -> str:
    """Purpose: Build the French acknowledgement read back to the user.
    Inputs/Outputs: Input is a ParsedQuery; output is a sentence.
    Side Effects / State: None.
    Dependencies: _format_amount.
    Failure Modes: None; an empty slot set yields a generic sentence.
    If Removed: The widget has nothing to speak before showing results.
    Testing Notes: chemise/bleu/M/max 60 -> "D'accord, je cherche chemise, bleu,
        taille M, à moins de 60 euros."
    """
    # Join present slots in a fixed order.
    parts = []
    if parsed.product_type:
        parts.append(parsed.product_type)
    if parsed.color:
        parts.append(parsed.color)
    if parsed.size:
        parts.append(f"taille {parsed.size}")
    if parsed.price_min is not None and parsed.price_max is not None:
        parts.append(f"entre {_format_amount(parsed.price_min)} et {_format_amount(parsed.price_max)} euros")
    elif parsed.price_max is not None:
        parts.append(f"à moins de {_format_amount(parsed.price_max)} euros")

    if parsed.intent == ADD_TO_CART:
        if not parts:
            return "D'accord, j'ajoute l'article correspondant au panier si je le trouve."
        return f"D'accord, j'ajoute {', '.join(parts)} au panier."

    if not parts:
        return "Très bien, je regarde ce que je trouve."
    return f"D'accord, je cherche {', '.join(parts)}."
