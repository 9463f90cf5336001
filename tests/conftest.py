"""Shared fixtures: bundled catalog, isolated storage and app clients."""

import dataclasses

import pytest

from vocalshop.catalog_loader import CatalogLoader
from vocalshop.catalog_provider import CatalogProvider
from vocalshop.config import MatchPolicy, load_settings
from vocalshop.storage import KeyValueStore


@pytest.fixture(scope="session")
def catalog():
    """Products from the bundled local catalog."""
    settings = load_settings()
    products, _meta = CatalogLoader(settings.catalog_path).load()
    return products


@pytest.fixture
def policy():
    return MatchPolicy()


@pytest.fixture
def memory_store():
    """Key-value store kept in memory only."""
    return KeyValueStore()


@pytest.fixture
def provider(catalog):
    return CatalogProvider(catalog)


@pytest.fixture
def settings(tmp_path):
    """Default settings with storage redirected to a temporary file."""
    return dataclasses.replace(load_settings(), storage_path=tmp_path / "storage.json")
