"""Tests for the assistant turn pipeline."""

import pytest

from vocalshop.assistant import (
    CART_CLEARED_MESSAGE,
    EMPTY_CART_MESSAGE,
    ORDER_CONFIRMED_MESSAGE,
    UnknownProductError,
    VoiceAssistant,
)
from vocalshop.catalog_provider import CatalogProvider
from vocalshop.matcher import CLARIFY_MESSAGE
from vocalshop.speech import NOTHING_HEARD_MESSAGE
from vocalshop.storage import KeyValueStore


@pytest.fixture
def assistant(provider, memory_store, policy):
    return VoiceAssistant(catalogs=provider, storage=memory_store, policy=policy)


def test_search_turn(assistant):
    turn = assistant.handle_message("s1", "chemise bleue taille M à moins de 60 euros")
    assert turn.intent == "search"
    assert [p.id for p in turn.results] == ["chemise-lin-bleue"]
    assert turn.trace == ["Passe 1 : correspondance stricte → 1 résultat(s)"]
    assert turn.message.startswith("D'accord, je cherche chemise, bleu, taille M")
    assert "J'ai trouvé 1 article(s)" in turn.message
    assert turn.cart.count == 0


def test_relaxed_search_mentions_widening(assistant):
    turn = assistant.handle_message("s1", "chemise bleue à moins de 30 euros")
    assert "en élargissant la recherche" in turn.message
    assert turn.suggestions


def test_add_turn_reports_substituted_size(assistant):
    turn = assistant.handle_message("s1", "mets au panier les baskets noires en 42")
    assert turn.intent == "add_to_cart"
    assert turn.message.startswith("✅ Ajouté au panier : Baskets noires urbaines (41) ×1")
    assert "La taille 42 n'est pas disponible, j'ai pris la taille 41 à la place." in turn.message
    assert [line.variant_id for line in turn.cart.lines] == ["baskets-noires-41"]
    assert turn.cart.total == 79.0


def test_repeated_add_merges_line(assistant):
    assistant.handle_message("s1", "ajoute deux robes rouges")
    turn = assistant.handle_message("s1", "ajoute une robe rouge")
    assert len(turn.cart.lines) == 1
    assert turn.cart.count == 3


def test_low_confidence_add_leaves_cart_unchanged(assistant):
    turn = assistant.handle_message("s1", "mets au panier")
    assert turn.message == CLARIFY_MESSAGE
    assert turn.cart.lines == []


def test_empty_message(assistant):
    turn = assistant.handle_message("s1", "   ")
    assert turn.message == NOTHING_HEARD_MESSAGE
    assert turn.parsed is None
    assert turn.cart is not None


def test_clear_command(assistant):
    assistant.handle_message("s1", "ajoute une veste beige")
    turn = assistant.handle_message("s1", "vide le panier")
    assert turn.intent == "clear"
    assert turn.message == CART_CLEARED_MESSAGE
    assert turn.cart.lines == []


def test_checkout_command_summarizes_cart(assistant):
    assistant.handle_message("s1", "ajoute une veste beige")
    turn = assistant.handle_message("s1", "je veux payer")
    assert turn.intent == "checkout"
    assert "1 article(s), total 89,00 €" in turn.message
    assert turn.cart.count == 1


def test_last_intent_is_persisted(assistant):
    assert assistant.last_intent("s1") is None
    assistant.handle_message("s1", "robe rouge autour de 60 euros")
    last = assistant.last_intent("s1")
    assert last.product_type == "robe"
    assert (last.price_min, last.price_max) == (50.0, 70.0)


def test_missing_session_id_is_generated(assistant):
    turn = assistant.handle_message(None, "robe")
    assert turn.session_id


def test_anonymous_turns_do_not_grow_storage_past_the_cap(provider, policy):
    store = KeyValueStore(max_scopes=10)
    assistant = VoiceAssistant(catalogs=provider, storage=store, policy=policy)
    session_ids = [assistant.handle_message(None, "robe rouge").session_id for _ in range(50)]
    assert len(set(session_ids)) == 50
    assert assistant.last_intent(session_ids[0]) is None
    assert assistant.last_intent(session_ids[-1]).product_type == "robe"


def test_empty_catalog(memory_store):
    assistant = VoiceAssistant(catalogs=CatalogProvider([]), storage=memory_store)
    turn = assistant.handle_message("s1", "robe rouge")
    assert turn.results == []
    assert turn.message == "Le catalogue est vide pour le moment."


def test_add_product_from_card(assistant):
    line = assistant.add_product("s1", "chemise-lin-bleue")
    assert line.variant_id == "chemise-lin-bleue-s"
    line = assistant.add_product("s1", "chemise-lin-bleue", variant_id="chemise-lin-bleue-m", quantity=2)
    assert line.quantity == 2
    assert assistant.cart("s1").count() == 3


def test_add_product_unknown_ids(assistant):
    with pytest.raises(UnknownProductError):
        assistant.add_product("s1", "nope")
    with pytest.raises(UnknownProductError):
        assistant.add_product("s1", "chemise-lin-bleue", variant_id="nope")


def test_confirm_order_clears_cart(assistant):
    assert assistant.confirm_order("s1").message == EMPTY_CART_MESSAGE
    assistant.add_product("s1", "veste-beige", quantity=2)
    result = assistant.confirm_order("s1")
    assert result.ok
    assert result.message == ORDER_CONFIRMED_MESSAGE
    assert (result.count, result.total) == (2, 178.0)
    assert assistant.cart("s1").lines() == []
