"""Voice assistant turn pipeline.

Role:
    Wires the parser, the catalog matcher and the cart store behind one call per
    user message (typed or the final text of a listening session). It owns the
    AssistantTurn contract returned to the widget.

Turn data contract (core fields passed across steps):
    - products, catalog_source: catalog resolved for this turn.
    - command: explicit cart command (clear/checkout) if any.
    - parsed, spoken: ParsedQuery and its acknowledgement sentence.
    - results, suggestions, trace: search output.
    - selection: add-to-cart matcher output.
    - message: text shown (and spoken) in the panel.
    - cart: cart snapshot after the turn.

Step contracts:
    Catalog: resolves products (remote URL or local fallback).
    Empty Guard: rejects blank input with the "nothing heard" message.
    Cart Command: handles "vider le panier" and checkout words.
    Parse: fills parsed/spoken.
    Add To Cart: only for add_to_cart intent; applies the confidence threshold.
    Search: relaxation search for everything else.
    Finalize: persists the parsed intent and attaches the cart (always runs).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .cart_store import CartStore
from .catalog_provider import CatalogProvider
from .config import DEFAULT_WELCOME, MatchPolicy
from .matcher import CartSelection, search_products, select_for_cart
from .models import CartLine, CartView, CheckoutResponse, Product
from .nlu import (
    ADD_TO_CART,
    CHECKOUT_COMMAND,
    CLEAR_COMMAND,
    ParsedQuery,
    detect_cart_command,
    parse_user_utterance,
    to_spoken_summary,
)
from .speech import NOTHING_HEARD_MESSAGE
from .steps import Step, StepRunner
from .storage import KeyValueStore
from .utils import format_price

logger = logging.getLogger("vocalshop.assistant")

LAST_INTENT_KEY = "last_intent"

CART_CLEARED_MESSAGE = "🧺 Panier vidé."
CHECKOUT_OPEN_MESSAGE = "🧾 (Démo) Ouverture du panier…"
EMPTY_CATALOG_MESSAGE = "Le catalogue est vide pour le moment."
EMPTY_CART_MESSAGE = "Votre panier est vide."
ORDER_CONFIRMED_MESSAGE = "Merci 🎉 Commande simulée : ceci est un checkout de démonstration gratuit."


class UnknownProductError(LookupError):
    """Raised when a card click references a product or variant missing from the catalog."""


@dataclass
class AssistantTurn:
    """Mutable state of one assistant turn."""
    session_id: str
    user_message: str
    catalog_url: Optional[str] = None
    products: List[Product] = field(default_factory=list)
    catalog_source: str = "local"
    command: Optional[str] = None
    parsed: Optional[ParsedQuery] = None
    spoken: str = ""
    message: str = ""
    results: List[Product] = field(default_factory=list)
    suggestions: List[Product] = field(default_factory=list)
    trace: List[str] = field(default_factory=list)
    selection: Optional[CartSelection] = None
    cart: Optional[CartView] = None
    handled: bool = False
    logs: List[Dict[str, str]] = field(default_factory=list)

    @property
    def intent(self) -> str:
        if self.command:
            return self.command
        return self.parsed.intent if self.parsed else "none"

    def log(self, event: str, detail: str, status: str = "success") -> None:
        # Structured entry surfaced to the widget for debugging.
        self.logs.append({"event": event, "detail": detail, "status": status})


def confirmation_message(selection: CartSelection, requested_size: Optional[str]) -> str:
    """Purpose: Build the "added to cart" confirmation, naming any size substitution.
    Inputs/Outputs: Inputs are a successful CartSelection and the requested size;
        output is the message shown and spoken.
    Side Effects / State: None.
    Dependencies: format_price.
    Failure Modes: None; assumes selection.ok.
    If Removed: Users are not told when a different size was added.
    Testing Notes: size 42 unavailable, 41 chosen -> message mentions 42 and 41.
    """
    # Product, variant, quantity and price; then the substitution note.
    product, variant = selection.product, selection.variant
    text = (
        f"✅ Ajouté au panier : {product.title} ({variant.title}) ×{selection.quantity} "
        f"— {format_price(variant.price, variant.currency)}"
    )
    if selection.size_substituted and requested_size:
        text += (
            f". La taille {requested_size} n'est pas disponible, "
            f"j'ai pris la taille {variant.title} à la place."
        )
    return text


class VoiceAssistant:
    def __init__(
        self,
        catalogs: CatalogProvider,
        storage: KeyValueStore,
        policy: Optional[MatchPolicy] = None,
        welcome_message: str = DEFAULT_WELCOME,
    ) -> None:
        """Purpose: Build the assistant and its turn pipeline.
        Inputs/Outputs: Inputs are the catalog provider, the key-value storage, the
            matching policy and the welcome text; no return value.
        Side Effects / State: Constructs a StepRunner with ordered steps.
        Dependencies: StepRunner/Step and the step methods below.
        Failure Modes: None at init.
        If Removed: The chat endpoint and listening sessions have nothing to call.
        Testing Notes: Instantiate with an in-memory KeyValueStore and a small catalog.
        """
        # Store dependencies and register the turn stages.
        self._catalogs = catalogs
        self._storage = storage
        self._policy = policy or MatchPolicy()
        self.welcome_message = welcome_message
        self._runner = StepRunner(
            [
                Step("catalog", self._step_catalog),
                Step("empty_guard", self._step_empty_guard),
                Step("cart_command", self._step_cart_command),
                Step("parse", self._step_parse),
                Step("add_to_cart", self._step_add_to_cart, skip_if=lambda turn: turn.parsed.intent != ADD_TO_CART),
                Step("search", self._step_search),
                Step("finalize", self._step_finalize, always_run=True),
            ]
        )

    @property
    def policy(self) -> MatchPolicy:
        return self._policy

    def cart(self, session_id: str) -> CartStore:
        return CartStore(self._storage.scope(session_id))

    def last_intent(self, session_id: str) -> Optional[ParsedQuery]:
        data = self._storage.scope(session_id).get_item(LAST_INTENT_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return ParsedQuery.from_dict(data)
        except TypeError:
            return None

    def handle_message(
        self,
        session_id: Optional[str],
        user_message: str,
        catalog_url: Optional[str] = None,
    ) -> AssistantTurn:
        """Purpose: Run the full turn pipeline for a typed or spoken message.
        Inputs/Outputs: Inputs are session_id (generated if missing), the message and
            an optional remote catalog URL; output is a populated AssistantTurn.
        Side Effects / State: May mutate and persist the session cart and last intent.
        Dependencies: StepRunner.run.
        Failure Modes: User input never raises; storage errors are logged and ignored.
        If Removed: No message can be answered.
        Testing Notes: "mets au panier les baskets noires en 42" adds one line.
        """
        # Build the turn and execute the stages.
        turn = AssistantTurn(
            session_id=session_id or uuid.uuid4().hex,
            user_message=(user_message or "").strip(),
            catalog_url=catalog_url,
        )
        logger.info("session=%s message=%r", turn.session_id, turn.user_message)
        self._runner.run(turn)
        return turn

    def _step_catalog(self, turn: AssistantTurn) -> None:
        # Remote catalog errors degrade to the local catalog.
        selection = self._catalogs.get(turn.catalog_url)
        turn.products = selection.products
        turn.catalog_source = selection.source
        if selection.error:
            turn.log("Catalog", f"fallback local: {selection.error}", status="warning")
        else:
            turn.log("Catalog", f"{selection.source}: {len(selection.products)} produit(s)")

    def _step_empty_guard(self, turn: AssistantTurn) -> None:
        if turn.user_message:
            return
        turn.message = NOTHING_HEARD_MESSAGE
        turn.handled = True
        turn.log("Input", "empty message", status="warning")

    def _step_cart_command(self, turn: AssistantTurn) -> None:
        # Explicit cart commands bypass parsing.
        command = detect_cart_command(turn.user_message)
        if command is None:
            return
        turn.command = command
        cart = self.cart(turn.session_id)
        if command == CLEAR_COMMAND:
            cart.clear()
            turn.message = CART_CLEARED_MESSAGE
        elif command == CHECKOUT_COMMAND:
            view = cart.view()
            turn.message = (
                f"{CHECKOUT_OPEN_MESSAGE} {view.count} article(s), "
                f"total {format_price(view.total, view.currency)}."
            )
        turn.handled = True
        turn.log("Cart Command", command)

    def _step_parse(self, turn: AssistantTurn) -> None:
        turn.parsed = parse_user_utterance(turn.user_message, around_delta=self._policy.around_delta)
        turn.spoken = to_spoken_summary(turn.parsed)
        turn.log("Intent Detection", f"{turn.parsed.intent} {_slot_summary(turn.parsed)}")

    def _step_add_to_cart(self, turn: AssistantTurn) -> None:
        """Purpose: Resolve and add the requested article to the cart.
        Inputs/Outputs: Input is the turn; sets selection/message and handled.
        Side Effects / State: Persists a merged cart line on success.
        Dependencies: select_for_cart, CartStore.add_line, confirmation_message.
        Failure Modes: Low-confidence matches produce a clarification message and
            leave the cart unchanged.
        If Removed: add_to_cart utterances fall through to search.
        Testing Notes: A request with no slot at all must not add anything.
        """
        # Refuse to guess below the threshold.
        selection = select_for_cart(turn.products, turn.parsed, self._policy)
        turn.selection = selection
        turn.handled = True
        if not selection.ok:
            turn.message = selection.message
            turn.log("Add To Cart", f"refused score={selection.score}", status="warning")
            return
        self.cart(turn.session_id).add_line(selection.product, selection.variant, selection.quantity)
        turn.message = confirmation_message(selection, turn.parsed.size)
        turn.results = [selection.product]
        turn.log("Add To Cart", f"{selection.variant.id} score={selection.score} qty={selection.quantity}")

    def _step_search(self, turn: AssistantTurn) -> None:
        # Relaxation search; the trace is shown under the results.
        if not turn.products:
            turn.message = EMPTY_CATALOG_MESSAGE
            turn.handled = True
            return
        outcome = search_products(turn.products, turn.parsed, self._policy)
        turn.results = outcome.results
        turn.suggestions = outcome.suggestions
        turn.trace = outcome.trace
        found = f"J'ai trouvé {len(outcome.results)} article(s)"
        if outcome.pass_number > 1:
            found += " en élargissant la recherche"
        turn.message = f"{turn.spoken} {found}."
        turn.handled = True
        turn.log("Search", outcome.trace[-1] if outcome.trace else "no pass")

    def _step_finalize(self, turn: AssistantTurn) -> None:
        # Persist the parsed intent and attach the cart snapshot.
        cart = self.cart(turn.session_id)
        if turn.parsed is not None:
            self._storage.scope(turn.session_id).set_item(LAST_INTENT_KEY, turn.parsed.to_dict())
        turn.cart = cart.view()
        logger.info(
            "session=%s intent=%s results=%d cart_count=%d",
            turn.session_id,
            turn.intent,
            len(turn.results),
            turn.cart.count,
        )

    def add_product(
        self,
        session_id: str,
        product_id: str,
        variant_id: Optional[str] = None,
        quantity: int = 1,
        catalog_url: Optional[str] = None,
    ) -> CartLine:
        """Purpose: Add a product from a result card ("Ajouter au panier").
        Inputs/Outputs: Inputs are the session, product id, optional variant id and
            quantity; output is the resulting CartLine.
        Side Effects / State: Persists the cart.
        Dependencies: CatalogProvider.get, Product.first_available_variant, CartStore.
        Failure Modes: Raises UnknownProductError for ids missing from the catalog.
        If Removed: Result card buttons cannot add items.
        Testing Notes: No variant id -> first available variant.
        """
        # Card clicks name the product directly; no scoring involved.
        products = self._catalogs.get(catalog_url).products
        product = next((item for item in products if item.id == product_id), None)
        if product is None:
            raise UnknownProductError(f"Produit inconnu : {product_id}")
        if variant_id:
            variant = product.find_variant(variant_id)
            if variant is None:
                raise UnknownProductError(f"Variante inconnue : {variant_id}")
        else:
            variant = product.first_available_variant()
        return self.cart(session_id).add_line(product, variant, quantity)

    def confirm_order(self, session_id: str) -> CheckoutResponse:
        """Simulated checkout: report the total and clear the cart."""
        cart = self.cart(session_id)
        view = cart.view()
        if not view.lines:
            return CheckoutResponse(ok=False, message=EMPTY_CART_MESSAGE, total=0.0, count=0)
        cart.clear()
        logger.info("session=%s order confirmed count=%d total=%.2f", session_id, view.count, view.total)
        return CheckoutResponse(ok=True, message=ORDER_CONFIRMED_MESSAGE, total=view.total, count=view.count)


def _slot_summary(parsed: ParsedQuery) -> str:
    # Compact slot view for logs.
    slots = {
        "type": parsed.product_type,
        "color": parsed.color,
        "size": parsed.size,
        "min": parsed.price_min,
        "max": parsed.price_max,
        "qty": parsed.quantity,
    }
    return " ".join(f"{key}={value}" for key, value in slots.items() if value is not None)
