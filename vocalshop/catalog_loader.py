"""Catalog loading and validation for the voice assistant.

This module turns a JSON payload (a bare array of products or
{"products": [...]}) into validated Product objects, resolves relative image
URLs against the catalog location, and builds the normalized text haystack
used by the matcher.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from pydantic import ValidationError

from .models import CatalogWrapped, Product
from .utils import normalize_text

logger = logging.getLogger("vocalshop.catalog")

ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


class CatalogError(ValueError):
    """Raised when a catalog payload does not match the product schema."""


@dataclass
class CatalogMeta:
    """Metadata describing the catalog source for logging."""
    source: str
    updated_at: str
    sha256: str
    count: int


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        """Purpose: Configure the loader with a local catalog file path.
        Inputs/Outputs: Input is a Path to a JSON catalog; no return value.
        Side Effects / State: Stores the path for later load calls.
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; load() handles read/parse errors.
        If Removed: The assistant has no local fallback catalog.
        Testing Notes: Instantiate with a temp path and call load().
        """
        # Store the catalog file location for subsequent loads.
        self._path = path

    def load(self) -> Tuple[List[Product], CatalogMeta]:
        """Purpose: Load and validate catalog data from the local file.
        Inputs/Outputs: No inputs; returns the product list and CatalogMeta.
        Side Effects / State: Reads file contents and computes hash/mtime.
        Dependencies: Uses json, hashlib, and parse_catalog_payload.
        Failure Modes: Missing file raises OSError; invalid JSON or schema raises CatalogError.
        If Removed: Catalog endpoints and the matcher have no data.
        Testing Notes: Load the bundled products.json and check product count.
        """
        # Read bytes for hashing and parse JSON into validated products.
        raw_bytes = self._path.read_bytes()
        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        updated_at = datetime.fromtimestamp(self._path.stat().st_mtime).isoformat()
        try:
            data = json.loads(raw_bytes.decode("utf-8-sig"))
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Catalogue illisible : {exc}") from exc

        products = parse_catalog_payload(data)
        meta = CatalogMeta(
            source=self._path.name,
            updated_at=updated_at,
            sha256=sha256,
            count=len(products),
        )
        logger.info("catalog=%s products=%d sha256=%s", meta.source, meta.count, sha256[:12])
        return products, meta


def parse_catalog_payload(data: Any, catalog_url: Optional[str] = None) -> List[Product]:
    """Purpose: Validate a catalog payload and normalize image URLs.
    Inputs/Outputs: Input is decoded JSON and an optional catalog URL; output is products.
    Side Effects / State: None.
    Dependencies: pydantic Product/CatalogWrapped models, normalize_image_url.
    Failure Modes: Raises CatalogError for unknown shapes, duplicate product ids or schema violations
        (empty id/title, negative price, bad currency, no variants).
    If Removed: External catalogs are trusted blindly and may crash the matcher.
    Testing Notes: Accept both array and {"products": [...]} shapes; reject a
        product with no variants.
    """
    # Accept a bare array or a {"products": [...]} wrapper.
    if isinstance(data, list):
        try:
            products = [Product.model_validate(item) for item in data]
        except ValidationError as exc:
            raise CatalogError(f"Le catalogue n'est pas un tableau valide. ({exc.error_count()} erreur(s))") from exc
    elif isinstance(data, dict) and "products" in data:
        try:
            products = CatalogWrapped.model_validate(data).products
        except ValidationError as exc:
            raise CatalogError(
                f"Le catalogue {{ products: [...] }} est invalide. ({exc.error_count()} erreur(s))"
            ) from exc
    else:
        raise CatalogError("Format de catalogue inconnu (attendu: tableau de produits).")

    # Cart lines and card adds address products by id.
    seen = set()
    for product in products:
        if product.id in seen:
            raise CatalogError(f"Identifiant de produit en double : {product.id}")
        seen.add(product.id)

    if not catalog_url:
        return products
    return [
        product.model_copy(update={"image": normalize_image_url(product.image, catalog_url)})
        for product in products
    ]


def normalize_image_url(url: Optional[str], catalog_url: str) -> Optional[str]:
    """Purpose: Resolve relative product image URLs against the catalog URL.
    Inputs/Outputs: Inputs are the image URL and catalog URL; output is an absolute URL.
    Side Effects / State: None.
    Dependencies: urllib.parse.
    Failure Modes: Unparseable catalog URLs return the image unchanged.
    If Removed: Partner catalogs with "/images/x.jpg" show broken images in the widget.
    Testing Notes: "/img/a.jpg" + "https://shop.fr/c/products.json" -> "https://shop.fr/img/a.jpg".
    """
    # Keep absolute URLs, resolve site-absolute and relative paths.
    if not url:
        return url
    if ABSOLUTE_URL_RE.match(url):
        return url
    base = urlparse(catalog_url)
    if not base.scheme or not base.netloc:
        return url
    if url.startswith("/"):
        return f"{base.scheme}://{base.netloc}{url}"
    return urljoin(catalog_url, url)


def product_haystack(product: Product) -> str:
    """Build the normalized title + description + tags text used for matching."""
    parts = [product.title, product.description, " ".join(product.tags)]
    return normalize_text(" ".join(part for part in parts if part))
