import json
import unicodedata
from typing import Any, Iterable, Optional


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable matching in the parser and matcher.
    Inputs/Outputs: Input is a raw string; output is a lowercase string with
        diacritics removed. Punctuation is kept ("t-shirt", "<=", "jusqu'a").
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata; called by nlu, matcher, and the catalog loader.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Accented utterances ("bleue", "à") stop matching alias tables.
    Testing Notes: "Chemise BLEUE à 60€" -> "chemise bleue a 60€".
    """
    # Lowercase and strip combining marks after canonical decomposition.
    if not text:
        return ""
    lowered = str(text).lower().replace("’", "'")
    decomposed = unicodedata.normalize("NFD", lowered)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def contains_any(haystack: str, needles: Iterable[str]) -> bool:
    """Purpose: Check whether any normalized needle is a substring of the haystack.
    Inputs/Outputs: Inputs are a normalized haystack and raw needles; output is bool.
    Side Effects / State: None.
    Dependencies: normalize_text.
    Failure Modes: Empty needles are ignored.
    If Removed: Alias matching in the matcher has to be repeated inline.
    Testing Notes: contains_any("chemise bleue", ["bleu"]) is True.
    """
    # Compare on normalized forms only.
    for needle in needles:
        normalized = normalize_text(needle)
        if normalized and normalized in haystack:
            return True
    return False


def safe_json_loads(text: str) -> Optional[Any]:
    """Parse JSON text, returning None instead of raising on malformed input."""
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def format_price(amount: float, currency: str) -> str:
    """Purpose: Render a price the way the French widget displays it.
    Inputs/Outputs: Inputs are amount and ISO currency; output like "49,90 €".
    Side Effects / State: None.
    Dependencies: None; the euro sign is used for EUR, the code otherwise.
    Failure Modes: None; unknown currencies fall back to their code.
    If Removed: Cart and confirmation messages lose consistent price display.
    Testing Notes: format_price(1234.5, "EUR") -> "1 234,50 €".
    """
    # French grouping (space) and decimal comma.
    whole = f"{amount:,.2f}".replace(",", " ").replace(".", ",")
    symbol = "€" if (currency or "").upper() == "EUR" else (currency or "").upper()
    return f"{whole} {symbol}".strip()
