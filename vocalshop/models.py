from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Variant(BaseModel):
    """Purchasable size/option of a product."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    price: float = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    available: bool = True

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class Product(BaseModel):
    """Catalog product with its ordered variants."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    image: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    variants: List[Variant] = Field(min_length=1)

    @field_validator("image", mode="before")
    @classmethod
    def _blank_image(cls, value: Any) -> Any:
        # Treat empty image strings as missing.
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    def first_available_variant(self) -> Variant:
        """Return the first available variant, or the first variant when none is available."""
        for variant in self.variants:
            if variant.available:
                return variant
        return self.variants[0]

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class CatalogWrapped(BaseModel):
    """Catalog payload of the form {"products": [...]}."""
    products: List[Product]


class CartLine(BaseModel):
    """Persisted cart line with display fields copied from the catalog at add-time."""
    variant_id: str
    product_id: str
    title: str
    variant_title: str
    price: float
    currency: str
    image: Optional[str] = None
    quantity: int = Field(default=1, ge=1)


class CartView(BaseModel):
    """Cart snapshot returned to the widget."""
    lines: List[CartLine]
    count: int
    total: float
    currency: str = "EUR"


class ChatRequest(BaseModel):
    """Request payload for the assistant API."""
    session_id: Optional[str] = Field(default=None)
    message: str = ""
    catalog_url: Optional[str] = None


class ChatResponse(BaseModel):
    """Response payload returned by the assistant API."""
    session_id: str
    message: str
    spoken: str
    intent: str
    parsed: Optional[Dict[str, Any]] = None
    results: List[Product]
    suggestions: List[Product]
    trace: List[str]
    cart: CartView
    logs: List[Dict[str, str]]


class AddLineRequest(BaseModel):
    """Direct "Ajouter au panier" click on a result card."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    catalog_url: Optional[str] = None


class QuantityRequest(BaseModel):
    quantity: int


class CheckoutResponse(BaseModel):
    """Simulated order confirmation."""
    ok: bool
    message: str
    total: float
    count: int
