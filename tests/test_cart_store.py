"""Tests for the session cart and its key-value storage."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from vocalshop.cart_store import CART_KEY, CartStore
from vocalshop.models import Product
from vocalshop.storage import KeyValueStore


@pytest.fixture
def shirt(catalog):
    return next(p for p in catalog if p.id == "chemise-lin-bleue")


@pytest.fixture
def cart(memory_store):
    return CartStore(memory_store.scope("session-a"))


@pytest.mark.parametrize("q1,q2", [(1, 1), (2, 3), (5, 1)])
def test_same_variant_merges_quantities(cart, shirt, q1, q2):
    variant = shirt.variants[0]
    cart.add_line(shirt, variant, q1)
    cart.add_line(shirt, variant, q2)
    lines = cart.lines()
    assert len(lines) == 1
    assert lines[0].quantity == q1 + q2


def test_lines_copy_display_fields(cart, shirt):
    line = cart.add_line(shirt, shirt.variants[1], 1)
    assert line.variant_id == "chemise-lin-bleue-m"
    assert line.product_id == "chemise-lin-bleue"
    assert line.title == "Chemise en lin bleue"
    assert line.variant_title == "M"
    assert line.price == 49.9
    assert line.currency == "EUR"
    assert line.image == "/images/chemise-bleue.jpg"


def test_different_variants_keep_insertion_order(cart, shirt):
    cart.add_line(shirt, shirt.variants[1])
    cart.add_line(shirt, shirt.variants[0])
    assert [line.variant_id for line in cart.lines()] == ["chemise-lin-bleue-m", "chemise-lin-bleue-s"]


def test_decrement_to_zero_removes_line(cart, shirt):
    variant = shirt.variants[0]
    cart.add_line(shirt, variant, 2)
    assert cart.decrement(variant.id).quantity == 1
    assert cart.decrement(variant.id) is None
    assert cart.lines() == []


def test_set_quantity_clamps_and_removes(cart, shirt):
    variant = shirt.variants[0]
    cart.add_line(shirt, variant, 1)
    assert cart.set_quantity(variant.id, 4).quantity == 4
    assert cart.set_quantity(variant.id, -2) is None
    assert cart.find(variant.id) is None
    assert cart.set_quantity("unknown", 3) is None


def test_increment_remove_count_total(cart, shirt):
    cart.add_line(shirt, shirt.variants[0], 1)
    cart.add_line(shirt, shirt.variants[1], 2)
    cart.increment(shirt.variants[0].id)
    assert cart.count() == 4
    assert cart.total() == 199.6
    assert cart.remove_line(shirt.variants[1].id) is True
    assert cart.remove_line(shirt.variants[1].id) is False
    view = cart.view()
    assert view.count == 2
    assert view.total == 99.8
    assert view.currency == "EUR"


def test_clear_removes_persisted_key(memory_store, cart, shirt):
    cart.add_line(shirt, shirt.variants[0])
    cart.clear()
    assert cart.lines() == []
    assert memory_store.get_item("session-a", CART_KEY) is None


def test_sessions_are_isolated(memory_store, shirt):
    CartStore(memory_store.scope("a")).add_line(shirt, shirt.variants[0])
    assert CartStore(memory_store.scope("b")).lines() == []


def test_malformed_lines_are_skipped(memory_store, cart, shirt):
    cart.add_line(shirt, shirt.variants[0])
    stored = memory_store.get_item("session-a", CART_KEY)
    memory_store.set_item("session-a", CART_KEY, stored + [{"variant_id": "x"}, "junk"])
    assert [line.variant_id for line in cart.lines()] == ["chemise-lin-bleue-s"]


def test_cart_survives_store_reload(tmp_path, shirt):
    path = tmp_path / "storage.json"
    CartStore(KeyValueStore(path).scope("s")).add_line(shirt, shirt.variants[0], 3)
    reloaded = CartStore(KeyValueStore(path).scope("s"))
    assert reloaded.lines()[0].quantity == 3


def test_persistence_failure_is_ignored(tmp_path, shirt):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = KeyValueStore(blocker / "storage.json")
    cart = CartStore(store.scope("s"))
    cart.add_line(shirt, shirt.variants[0])
    assert cart.count() == 1
    assert store.set_item("s", "k", 1) is False


def test_corrupt_storage_file_starts_empty(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    assert KeyValueStore(path).get_item("s", CART_KEY) is None


def test_unavailable_variant_can_still_be_added(cart):
    product = Product.model_validate(
        {
            "id": "p",
            "title": "Produit",
            "variants": [{"id": "p-1", "title": "U", "price": 10, "currency": "eur", "available": False}],
        }
    )
    line = cart.add_line(product, product.variants[0], 0)
    assert line.quantity == 1
    assert line.currency == "EUR"


def test_concurrent_adds_on_one_session_are_not_lost(cart, shirt):
    variant = shirt.variants[0]
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _n: cart.add_line(shirt, variant, 1), range(20)))
    assert [line.quantity for line in cart.lines()] == [20]


def test_concurrent_increments_are_not_lost(cart, shirt):
    variant = shirt.variants[0]
    cart.add_line(shirt, variant, 1)
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _n: cart.increment(variant.id), range(15)))
    assert cart.find(variant.id).quantity == 16


def test_update_removes_key_when_function_returns_none(memory_store):
    assert memory_store.update("s", "k", lambda current: (current or 0) + 1) == 1
    assert memory_store.update("s", "k", lambda current: current + 1) == 2
    assert memory_store.scope("s").update("k", lambda _current: None) is None
    assert memory_store.get_item("s", "k") is None


def test_store_keeps_only_the_most_recent_sessions(tmp_path):
    path = tmp_path / "storage.json"
    store = KeyValueStore(path, max_scopes=3)
    for n in range(5):
        store.set_item(f"s{n}", "k", n)
    # Writing to an old session makes it recent again.
    store.set_item("s2", "k", 22)
    store.set_item("s5", "k", 5)
    assert store.get_item("s0", "k") is None
    assert store.get_item("s3", "k") is None
    assert [store.get_item(s, "k") for s in ("s4", "s2", "s5")] == [4, 22, 5]

    reloaded = KeyValueStore(path, max_scopes=2)
    assert reloaded.get_item("s4", "k") is None
    assert reloaded.get_item("s2", "k") == 22
    assert KeyValueStore(path).get_item("s4", "k") is None
