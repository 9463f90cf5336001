"""Tests for the relaxation search and the add-to-cart matcher."""

from vocalshop.config import MatchPolicy
from vocalshop.assistant import confirmation_message
from vocalshop.matcher import (
    CLARIFY_MESSAGE,
    choose_variant,
    score_candidate,
    search_products,
    select_for_cart,
)
from vocalshop.models import Product
from vocalshop.nlu import parse_user_utterance


def _product(pid, title, tags, variants, description=""):
    return Product.model_validate(
        {
            "id": pid,
            "title": title,
            "description": description,
            "tags": tags,
            "variants": [
                {"id": f"{pid}-{size}", "title": size, "price": price, "currency": "EUR", "available": available}
                for size, price, available in variants
            ],
        }
    )


def test_strict_pass_finds_blue_linen_shirt(catalog, policy):
    parsed = parse_user_utterance("chemise bleue taille M à moins de 60 euros")
    outcome = search_products(catalog, parsed, policy)
    assert [p.id for p in outcome.results] == ["chemise-lin-bleue"]
    assert outcome.pass_number == 1
    assert outcome.trace == ["Passe 1 : correspondance stricte → 1 résultat(s)"]


def test_price_relaxed_pass_reports_passe_2(catalog, policy):
    parsed = parse_user_utterance("chemise bleue à moins de 30 euros")
    outcome = search_products(catalog, parsed, policy)
    assert [p.id for p in outcome.results] == ["chemise-lin-bleue"]
    assert outcome.pass_number == 2
    assert outcome.trace[0] == "Passe 1 : correspondance stricte → 0 résultat"
    assert outcome.trace[1].startswith("Passe 2")


def test_color_relaxed_pass(catalog, policy):
    parsed = parse_user_utterance("robe verte")
    outcome = search_products(catalog, parsed, policy)
    assert outcome.pass_number == 3
    assert [p.id for p in outcome.results] == ["robe-rouge-ete"]


def test_unknown_query_falls_back_to_whole_catalog(catalog, policy):
    parsed = parse_user_utterance("une montre connectée")
    outcome = search_products(catalog, parsed, policy)
    assert outcome.pass_number == 5
    assert len(outcome.results) == len(catalog)
    assert outcome.trace[-1].startswith("Passe 5 : tout le catalogue")
    assert outcome.suggestions == []


def test_results_are_capped(catalog):
    outcome = search_products(catalog, parse_user_utterance(""), MatchPolicy(result_limit=3))
    assert [p.id for p in outcome.results] == [p.id for p in catalog[:3]]


def test_short_results_get_related_suggestions(catalog, policy):
    parsed = parse_user_utterance("robe rouge")
    outcome = search_products(catalog, parsed, policy)
    assert [p.id for p in outcome.results] == ["robe-rouge-ete"]
    # Nothing else is a dress or red and no price slot: no suggestions.
    assert outcome.suggestions == []

    parsed = parse_user_utterance("chemise bleue à moins de 30 euros")
    outcome = search_products(catalog, parsed, policy)
    suggested = [p.id for p in outcome.suggestions]
    assert "chemise-oxford-blanche" in suggested
    assert "tee-shirt-blanc" in suggested
    assert "chemise-lin-bleue" not in suggested
    assert len(suggested) <= policy.suggestion_limit


def test_empty_catalog_search(policy):
    outcome = search_products([], parse_user_utterance("robe"), policy)
    assert outcome.results == []
    assert len(outcome.trace) == 5


def test_type_and_color_candidate_beats_unrelated_one_regardless_of_order(policy):
    unrelated = _product("pull-gris", "Pull gris", ["pull", "gris"], [("M", 30, True)])
    dress = _product("robe-rouge", "Robe rouge", ["robe", "rouge"], [("M", 50, True)])
    parsed = parse_user_utterance("mets au panier une robe rouge")

    assert score_candidate(dress, parsed) >= 6
    assert score_candidate(unrelated, parsed) <= 0
    for catalog in ([unrelated, dress], [dress, unrelated]):
        selection = select_for_cart(catalog, parsed, policy)
        assert selection.ok
        assert selection.product.id == "robe-rouge"


def test_add_with_unavailable_size_substitutes_first_available(catalog, policy):
    parsed = parse_user_utterance("mets au panier les baskets noires en 42")
    selection = select_for_cart(catalog, parsed, policy)
    assert selection.ok
    assert selection.product.id == "baskets-noires"
    assert selection.variant.id == "baskets-noires-41"
    assert selection.size_substituted is True
    assert selection.score == 7


def test_add_without_slots_is_refused(catalog, policy):
    selection = select_for_cart(catalog, parse_user_utterance("mets au panier"), policy)
    assert not selection.ok
    assert selection.message == CLARIFY_MESSAGE


def test_threshold_comes_from_policy(catalog):
    parsed = parse_user_utterance("ajoute une robe")
    assert select_for_cart(catalog, parsed, MatchPolicy()).ok
    assert not select_for_cart(catalog, parsed, MatchPolicy(add_threshold=5)).ok


def test_quantity_carried_to_selection(catalog, policy):
    selection = select_for_cart(catalog, parse_user_utterance("ajoute deux chemises blanches taille L"), policy)
    assert selection.product.id == "chemise-oxford-blanche"
    assert selection.variant.id == "chemise-oxford-blanche-l"
    assert selection.quantity == 2
    assert not selection.size_substituted


def test_choose_variant_fallbacks():
    product = _product("p", "Produit", [], [("S", 10, False), ("Taille M", 10, True), ("L", 10, True)])
    assert choose_variant(product, "m") == (product.variants[1], False)
    assert choose_variant(product, None) == (product.variants[1], False)
    assert choose_variant(product, "42") == (product.variants[1], True)

    sold_out = _product("q", "Produit", [], [("S", 10, False), ("M", 10, False)])
    assert choose_variant(sold_out, None) == (sold_out.variants[0], False)


def test_smaller_size_is_not_taken_for_requested_xl(policy):
    tee = _product("tee-noir", "Tee-shirt noir", ["tee-shirt", "noir"], [("L", 20, True), ("XL", 20, False)])
    parsed = parse_user_utterance("ajoute le tee-shirt noir en XL")
    assert parsed.size == "XL"

    selection = select_for_cart([tee], parsed, policy)
    assert selection.variant.id == "tee-noir-L"
    assert selection.size_substituted is True
    # Only the sold-out XL carries the size: +1, not +3.
    assert selection.score == 7
    message = confirmation_message(selection, parsed.size)
    assert "La taille XL n'est pas disponible" in message
    assert "j'ai pris la taille L" in message


def test_size_must_be_a_whole_token_of_the_variant_title():
    product = _product("p", "Produit", [], [("XL", 10, True), ("Taille L", 10, True)])
    assert choose_variant(product, "L") == (product.variants[1], False)
    only_xl = _product("q", "Produit", [], [("XL", 10, True)])
    assert choose_variant(only_xl, "L") == (only_xl.variants[0], True)
    assert choose_variant(only_xl, "XL") == (only_xl.variants[0], False)


def test_color_narrowing_that_would_empty_candidates_is_skipped(catalog, policy):
    # No green dress: the color filter is ignored and the dress stays the only candidate.
    selection = select_for_cart(catalog, parse_user_utterance("ajoute une robe verte"), policy)
    assert [pid for pid, _score in selection.scores] == ["robe-rouge-ete"]


def test_suggestions_stop_at_the_suggestion_limit(policy):
    dress = _product("robe-rouge", "Robe rouge", ["robe", "rouge"], [("M", 50, True)])
    pulls = [
        _product(f"pull-rouge-{n}", f"Pull rouge {n}", ["pull", "rouge"], [("M", 30, True)])
        for n in range(8)
    ]
    outcome = search_products([dress] + pulls, parse_user_utterance("robe rouge"), policy)
    assert [p.id for p in outcome.results] == ["robe-rouge"]
    assert len(outcome.suggestions) == policy.suggestion_limit == 6
    assert [p.id for p in outcome.suggestions] == [f"pull-rouge-{n}" for n in range(6)]


def test_products_sharing_an_id_keep_their_own_text():
    dress = _product("dup", "Robe rouge", ["robe", "rouge"], [("M", 50, True)])
    trousers = _product("dup", "Pantalon gris", ["pantalon", "gris"], [("M", 40, True)])
    outcome = search_products([dress, trousers], parse_user_utterance("robe rouge"))
    assert outcome.pass_number == 1
    assert [p.title for p in outcome.results] == ["Robe rouge"]
