"""Tests for catalog validation and loading."""

import json

import pytest

from vocalshop.catalog_loader import (
    CatalogError,
    CatalogLoader,
    normalize_image_url,
    parse_catalog_payload,
    product_haystack,
)
from vocalshop.config import load_settings


def _item(**overrides):
    item = {
        "id": "p1",
        "title": "Veste",
        "variants": [{"id": "p1-m", "title": "M", "price": 10, "currency": "EUR"}],
    }
    item.update(overrides)
    return item


def test_bundled_catalogs_load():
    settings = load_settings()
    products, meta = CatalogLoader(settings.catalog_path).load()
    assert meta.count == len(products) == 8
    assert len(meta.sha256) == 64
    partner, _meta = CatalogLoader(settings.partner_catalog_path).load()
    assert [p.id for p in partner] == ["sneakers-noires-pro", "robe-rouge-coton"]


def test_array_and_wrapped_shapes():
    assert [p.id for p in parse_catalog_payload([_item()])] == ["p1"]
    assert [p.id for p in parse_catalog_payload({"products": [_item()]})] == ["p1"]


def test_optional_fields_defaulted():
    product = parse_catalog_payload([_item(description=None, image="  ")])[0]
    assert product.description == ""
    assert product.image is None
    assert product.tags == []
    assert product.variants[0].available is True


@pytest.mark.parametrize(
    "item",
    [
        _item(id=""),
        _item(title=""),
        _item(variants=[]),
        _item(variants=[{"id": "v", "title": "M", "price": -1, "currency": "EUR"}]),
        _item(variants=[{"id": "v", "title": "M", "price": 1, "currency": "EURO"}]),
        _item(variants=[{"id": "v", "title": "M", "price": "cher", "currency": "EUR"}]),
    ],
)
def test_invalid_products_are_rejected(item):
    with pytest.raises(CatalogError) as excinfo:
        parse_catalog_payload([item])
    assert str(excinfo.value).startswith("Le catalogue n'est pas un tableau valide.")


def test_invalid_wrapped_catalog_message():
    with pytest.raises(CatalogError) as excinfo:
        parse_catalog_payload({"products": [_item(variants=[])]})
    assert str(excinfo.value).startswith("Le catalogue { products: [...] } est invalide.")


@pytest.mark.parametrize("payload", [{"items": []}, "products", 42, None])
def test_unknown_shape(payload):
    with pytest.raises(CatalogError, match="Format de catalogue inconnu"):
        parse_catalog_payload(payload)


def test_duplicate_product_ids_are_rejected():
    payload = [_item(), _item(title="Veste bis")]
    with pytest.raises(CatalogError, match="Identifiant de produit en double : p1"):
        parse_catalog_payload(payload)
    with pytest.raises(CatalogError, match="en double"):
        parse_catalog_payload({"products": payload})


def test_invalid_json_file(tmp_path):
    path = tmp_path / "products.json"
    path.write_text("[{", encoding="utf-8")
    with pytest.raises(CatalogError):
        CatalogLoader(path).load()


def test_loader_reads_wrapped_file(tmp_path):
    path = tmp_path / "products.json"
    path.write_text(json.dumps({"products": [_item()]}), encoding="utf-8")
    products, meta = CatalogLoader(path).load()
    assert meta.source == "products.json"
    assert products[0].title == "Veste"


@pytest.mark.parametrize(
    "image,expected",
    [
        ("/img/a.jpg", "https://shop.fr/img/a.jpg"),
        ("img/a.jpg", "https://shop.fr/c/img/a.jpg"),
        ("https://cdn.fr/a.jpg", "https://cdn.fr/a.jpg"),
        (None, None),
    ],
)
def test_normalize_image_url(image, expected):
    assert normalize_image_url(image, "https://shop.fr/c/products.json") == expected


def test_payload_images_resolved_against_catalog_url():
    products = parse_catalog_payload([_item(image="/img/a.jpg")], catalog_url="https://shop.fr/c/products.json")
    assert products[0].image == "https://shop.fr/img/a.jpg"


def test_haystack_is_normalized():
    product = parse_catalog_payload([_item(title="Veste Légère", description="Été", tags=["Beige"])])[0]
    assert product_haystack(product) == "veste legere ete beige"


def test_module_docstring_is_set():
    from vocalshop import catalog_loader

    assert catalog_loader.__doc__.startswith("Catalog loading and validation")
