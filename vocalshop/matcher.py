"""Catalog matching for parsed shopping queries.

Search path:
    Sequential relaxation over the whole catalog. Each pass drops one more
    constraint (price, then color, then type, then text) and the first pass
    with at least one hit wins. A short result list is padded with loose
    "related" suggestions.

Add-to-cart path:
    Narrow candidates by type then color (never to an empty set), score them
    additively, refuse below the confidence threshold, then pick a variant
    for the requested size with availability fallbacks.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .catalog_loader import product_haystack
from .config import MatchPolicy
from .models import Product, Variant
from .nlu import COLOR_ALIASES, TYPE_ALIASES, ParsedQuery
from .utils import contains_any, normalize_text

logger = logging.getLogger("vocalshop.matcher")

CONSTRAINT_TEXT = "text"
CONSTRAINT_TYPE = "type"
CONSTRAINT_COLOR = "color"
CONSTRAINT_PRICE = "price"

_SIZE_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

RELAXATION_PASSES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Passe 1 : correspondance stricte", (CONSTRAINT_TEXT, CONSTRAINT_TYPE, CONSTRAINT_COLOR, CONSTRAINT_PRICE)),
    ("Passe 2 : sans contrainte de prix", (CONSTRAINT_TEXT, CONSTRAINT_TYPE, CONSTRAINT_COLOR)),
    ("Passe 3 : sans contrainte de couleur", (CONSTRAINT_TEXT, CONSTRAINT_TYPE)),
    ("Passe 4 : sans contrainte de type", (CONSTRAINT_TEXT,)),
    ("Passe 5 : tout le catalogue", ()),
)

CLARIFY_MESSAGE = (
    "Je ne suis pas sûr de l'article à ajouter. "
    "Peux-tu préciser le type (chemise, robe, baskets…), la couleur et la taille ?"
)
EMPTY_CATALOG_MESSAGE = "Je n'ai pas trouvé de produit à ajouter."


@dataclass
class SearchOutcome:
    """Search results with the relaxation trace that produced them."""
    results: List[Product] = field(default_factory=list)
    suggestions: List[Product] = field(default_factory=list)
    trace: List[str] = field(default_factory=list)
    pass_number: int = 0


@dataclass
class CartSelection:
    """Outcome of the add-to-cart matcher; product/variant are None on refusal."""
    product: Optional[Product] = None
    variant: Optional[Variant] = None
    quantity: int = 1
    score: int = 0
    size_substituted: bool = False
    message: str = ""
    scores: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.product is not None and self.variant is not None


def matches_type(haystack: str, product_type: Optional[str]) -> bool:
    """True when no type is requested or any alias of it occurs in the haystack."""
    if not product_type:
        return True
    return contains_any(haystack, TYPE_ALIASES.get(product_type, (product_type,)))


def matches_color(haystack: str, color: Optional[str]) -> bool:
    """True when no color is requested or any alias of it occurs in the haystack."""
    if not color:
        return True
    return contains_any(haystack, COLOR_ALIASES.get(color, (color,)))


def matches_price(product: Product, price_min: Optional[float], price_max: Optional[float]) -> bool:
    """Purpose: Check whether any variant price lies within the requested bounds.
    Inputs/Outputs: Inputs are a product and optional bounds; output is bool.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: None; absent bounds are open.
    If Removed: Budget slots have no effect on search.
    Testing Notes: 49.9 matches max=60; 69 does not.
    """
    # A product matches when at least one variant is in range.
    if price_min is None and price_max is None:
        return True
    for variant in product.variants:
        if price_min is not None and variant.price < price_min:
            continue
        if price_max is not None and variant.price > price_max:
            continue
        return True
    return False


def matches_text(product: Product, haystack: str, query_text: str) -> bool:
    """Purpose: Free-text constraint between the product and the whole query.
    Inputs/Outputs: Inputs are the product, its haystack and the normalized query;
        output is bool.
    Side Effects / State: None.
    Dependencies: normalize_text.
    Failure Modes: An empty query always matches.
    If Removed: Passes 1-4 collapse into type/color/price filtering only.
    Testing Notes: "chemise bleue taille m" matches a product tagged "chemise";
        "montre" matches nothing in a clothing catalog.
    """
    # Query inside the product text, or one of the product tags inside the query.
    query = (query_text or "").strip()
    if not query:
        return True
    if query in haystack:
        return True
    for tag in product.tags:
        normalized_tag = normalize_text(tag).strip()
        if normalized_tag and normalized_tag in query:
            return True
    return False


def _passes(
    product: Product,
    haystack: str,
    parsed: ParsedQuery,
    constraints: Sequence[str],
) -> bool:
    # Every active constraint must hold.
    if CONSTRAINT_TEXT in constraints and not matches_text(product, haystack, parsed.query_text):
        return False
    if CONSTRAINT_TYPE in constraints and not matches_type(haystack, parsed.product_type):
        return False
    if CONSTRAINT_COLOR in constraints and not matches_color(haystack, parsed.color):
        return False
    if CONSTRAINT_PRICE in constraints and not matches_price(product, parsed.price_min, parsed.price_max):
        return False
    return True


def search_products(
    catalog: Sequence[Product],
    parsed: ParsedQuery,
    policy: Optional[MatchPolicy] = None,
) -> SearchOutcome:
    """Purpose: Filter and rank the catalog for a search query with relaxation.
    Inputs/Outputs: Inputs are the full catalog, a ParsedQuery and MatchPolicy;
        output is a SearchOutcome (results, suggestions, trace, pass_number).
    Side Effects / State: None; logs the winning pass.
    Dependencies: RELAXATION_PASSES, _passes, related_products.
    Failure Modes: An empty catalog yields empty results and a trace for every pass.
    If Removed: The assistant cannot answer search utterances.
    Testing Notes: A query failing only on price must win at "Passe 2".
    """
    # Re-filter the whole catalog on every pass; stop at the first hit.
    policy = policy or MatchPolicy()
    haystacks = [product_haystack(product) for product in catalog]
    outcome = SearchOutcome()

    for index, (label, constraints) in enumerate(RELAXATION_PASSES, start=1):
        hits = [
            product
            for product, haystack in zip(catalog, haystacks)
            if _passes(product, haystack, parsed, constraints)
        ]
        if hits:
            outcome.results = hits[: policy.result_limit]
            outcome.pass_number = index
            outcome.trace.append(f"{label} → {len(hits)} résultat(s)")
            break
        outcome.trace.append(f"{label} → 0 résultat")

    if outcome.results and len(outcome.results) < policy.min_results:
        outcome.suggestions = related_products(catalog, parsed, outcome.results, policy, haystacks)

    logger.info(
        "search query=%r pass=%d results=%d suggestions=%d",
        parsed.query_text,
        outcome.pass_number,
        len(outcome.results),
        len(outcome.suggestions),
    )
    return outcome


def related_products(
    catalog: Sequence[Product],
    parsed: ParsedQuery,
    exclude: Sequence[Product],
    policy: MatchPolicy,
    haystacks: Optional[Sequence[str]] = None,
) -> List[Product]:
    """Purpose: Pick loose "related" suggestions around a short result list.
    Inputs/Outputs: Inputs are the catalog, the query, products to exclude and the
        policy; output is up to policy.suggestion_limit products in catalog order.
    Side Effects / State: None.
    Dependencies: matches_type, matches_color, matches_price.
    Failure Modes: With no type, color or price slot nothing qualifies.
    If Removed: One-result answers show no alternatives.
    Testing Notes: Query "robe rouge" -> other red items and other dresses.
    """
    # Loose OR of requested type, color, or a widened price window.
    excluded = {product.id for product in exclude}
    delta = policy.suggestion_delta
    low = parsed.price_min - delta if parsed.price_min is not None else None
    high = parsed.price_max + delta if parsed.price_max is not None else None
    has_price = low is not None or high is not None

    suggestions: List[Product] = []
    for index, product in enumerate(catalog):
        if product.id in excluded:
            continue
        haystack = haystacks[index] if haystacks is not None else product_haystack(product)
        loose = (
            (parsed.product_type and matches_type(haystack, parsed.product_type))
            or (parsed.color and matches_color(haystack, parsed.color))
            or (has_price and matches_price(product, low, high))
        )
        if loose:
            suggestions.append(product)
        if len(suggestions) >= policy.suggestion_limit:
            break
    return suggestions


def _size_matches(variant_title: str, size: str) -> Tuple[bool, bool]:
    # Returns (exact, carries) for a variant title against a requested size.
    # "carries" needs the size as a whole token, so "XL" never carries "L".
    title = normalize_text(variant_title).strip()
    wanted = normalize_text(size).strip()
    if not title or not wanted:
        return False, False
    exact = title == wanted or title == f"taille {wanted}"
    carries = exact or wanted in _SIZE_TOKEN_SPLIT.split(title)
    return exact, carries


def score_candidate(product: Product, parsed: ParsedQuery, haystack: Optional[str] = None) -> int:
    """Purpose: Additive confidence score of a product for an add-to-cart request.
    Inputs/Outputs: Inputs are the product and ParsedQuery; output is an int score.
    Side Effects / State: None.
    Dependencies: matches_type, matches_color, _size_matches.
    Failure Modes: None; a request with no slots scores 0.
    If Removed: The add path cannot tell a good candidate from the first one.
    Testing Notes: type+color match -> 6; neither -> -7.
    """
    # +3 type, +3 color, +3/+1 size (available/unavailable), -3/-4 misses.
    haystack = haystack if haystack is not None else product_haystack(product)
    score = 0
    if parsed.product_type:
        score += 3 if matches_type(haystack, parsed.product_type) else -3
    if parsed.color:
        score += 3 if matches_color(haystack, parsed.color) else -4
    if parsed.size:
        size_bonus = 0
        for variant in product.variants:
            _exact, carries = _size_matches(variant.title, parsed.size)
            if not carries:
                continue
            if variant.available:
                size_bonus = 3
                break
            size_bonus = max(size_bonus, 1)
        score += size_bonus
    return score


def choose_variant(product: Product, size: Optional[str]) -> Tuple[Variant, bool]:
    """Purpose: Pick the variant to add for a requested size.
    Inputs/Outputs: Inputs are the product and optional size; output is
        (variant, size_substituted).
    Side Effects / State: None.
    Dependencies: _size_matches, Product.first_available_variant.
    Failure Modes: None; products always carry at least one variant.
    If Removed: The cart receives arbitrary sizes.
    Testing Notes: size 42 unavailable -> first available variant, substituted=True.
    """
    # Exact available match, then whole-token available match, then fallbacks.
    if size:
        for variant in product.variants:
            exact, _carries = _size_matches(variant.title, size)
            if exact and variant.available:
                return variant, False
        for variant in product.variants:
            _exact, carries = _size_matches(variant.title, size)
            if carries and variant.available:
                return variant, False
    fallback = product.first_available_variant()
    substituted = bool(size) and not _size_matches(fallback.title, size or "")[1]
    return fallback, substituted


def _narrow(
    candidates: List[Tuple[Product, str]], predicate
) -> List[Tuple[Product, str]]:
    # Apply a filter only if it keeps at least one (product, haystack) pair.
    narrowed = [pair for pair in candidates if predicate(pair[1])]
    return narrowed or candidates


def select_for_cart(
    catalog: Sequence[Product],
    parsed: ParsedQuery,
    policy: Optional[MatchPolicy] = None,
) -> CartSelection:
    """Purpose: Choose the single (product, variant, quantity) to add to the cart.
    Inputs/Outputs: Inputs are the catalog, an add_to_cart ParsedQuery and the
        policy; output is a CartSelection (ok=False with a message on refusal).
    Side Effects / State: None; the caller persists the cart line.
    Dependencies: _narrow, score_candidate, choose_variant.
    Failure Modes: Best score below policy.add_threshold returns a clarification
        message instead of guessing.
    If Removed: Voice "mets au panier ..." commands cannot add anything.
    Testing Notes: A type+color candidate later in the catalog beats an earlier
        candidate matching neither.
    """
    # Narrow by type then color, score, and apply the confidence threshold.
    policy = policy or MatchPolicy()
    if not catalog:
        return CartSelection(message=EMPTY_CATALOG_MESSAGE)

    candidates = [(product, product_haystack(product)) for product in catalog]
    if parsed.product_type:
        candidates = _narrow(candidates, lambda h: matches_type(h, parsed.product_type))
    if parsed.color:
        candidates = _narrow(candidates, lambda h: matches_color(h, parsed.color))

    scored = [(score_candidate(product, parsed, haystack), product) for product, haystack in candidates]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    best_score, best = scored[0]
    score_log = [(product.id, score) for score, product in scored]
    logger.info("add query=%r best=%s score=%d", parsed.query_text, best.id, best_score)

    if best_score < policy.add_threshold:
        return CartSelection(score=best_score, message=CLARIFY_MESSAGE, scores=score_log)

    variant, substituted = choose_variant(best, parsed.size)
    return CartSelection(
        product=best,
        variant=variant,
        quantity=max(1, parsed.quantity or 1),
        score=best_score,
        size_substituted=substituted,
        scores=score_log,
    )
