from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from .catalog_loader import CatalogError, parse_catalog_payload
from .fetcher import FetchError, RemoteFetcher
from .models import Product

logger = logging.getLogger("vocalshop.catalog")


@dataclass
class CatalogSelection:
    """Catalog used for one turn and where it came from."""
    products: List[Product]
    source: str
    error: Optional[str] = None


class CatalogProvider:
    """Resolves the catalog for a turn: a remote URL when given, else the local file."""

    def __init__(self, local_products: List[Product], fetcher: Optional[RemoteFetcher] = None) -> None:
        """Purpose: Hold the local fallback catalog and the remote fetcher.
        Inputs/Outputs: Inputs are the validated local products and an optional
            RemoteFetcher; no return value.
        Side Effects / State: Keeps an in-memory cache of remote catalogs by URL.
        Dependencies: parse_catalog_payload, RemoteFetcher.
        Failure Modes: None at init.
        If Removed: The ?catalog= widget parameter has no effect.
        Testing Notes: A failing remote URL must fall back to the local products.
        """
        # Remote catalogs are immutable once loaded, so caching by URL is safe.
        self._local = list(local_products)
        self._fetcher = fetcher
        self._cache: Dict[str, List[Product]] = {}
        self._lock = threading.Lock()

    @property
    def local_products(self) -> List[Product]:
        return list(self._local)

    def get(self, catalog_url: Optional[str] = None) -> CatalogSelection:
        """Purpose: Return the catalog for a turn.
        Inputs/Outputs: Input is an optional remote catalog URL; output is a CatalogSelection.
        Side Effects / State: Fetches and caches a remote catalog on first use.
        Dependencies: RemoteFetcher.fetch_json, parse_catalog_payload.
        Failure Modes: Fetch/validation errors are logged and degrade to the local
            catalog, with the error message kept on the selection.
        If Removed: Every turn uses the local catalog only.
        Testing Notes: Invalid payloads report the French validation message.
        """
        # No URL, or no fetcher configured: the local catalog.
        if not catalog_url or self._fetcher is None:
            return CatalogSelection(products=self.local_products, source="local")

        with self._lock:
            cached = self._cache.get(catalog_url)
        if cached is not None:
            return CatalogSelection(products=list(cached), source=catalog_url)

        try:
            payload = self._fetcher.fetch_json(catalog_url)
            products = parse_catalog_payload(payload, catalog_url=catalog_url)
        except FetchError as exc:
            logger.warning("catalog url=%s fetch failed status=%d: %s", catalog_url, exc.status_code, exc.message)
            return CatalogSelection(products=self.local_products, source="local", error=exc.message)
        except CatalogError as exc:
            logger.warning("catalog url=%s invalid: %s", catalog_url, exc)
            return CatalogSelection(products=self.local_products, source="local", error=str(exc))

        with self._lock:
            self._cache[catalog_url] = products
        logger.info("catalog url=%s products=%d", catalog_url, len(products))
        return CatalogSelection(products=list(products), source=catalog_url)
