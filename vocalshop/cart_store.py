from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError

from .models import CartLine, CartView, Product, Variant
from .storage import ScopedStorage

logger = logging.getLogger("vocalshop.cart")

CART_KEY = "cart"

T = TypeVar("T")


class CartStore:
    """Ordered cart lines, unique by variant id, persisted after every mutation."""

    def __init__(self, storage: ScopedStorage, key: str = CART_KEY) -> None:
        """Purpose: Bind the cart to a session-scoped storage slot.
        Inputs/Outputs: Inputs are a ScopedStorage and the storage key; no return value.
        Side Effects / State: None until the first read or mutation.
        Dependencies: ScopedStorage, CartLine.
        Failure Modes: None at init.
        If Removed: The assistant cannot keep a cart per session.
        Testing Notes: Two CartStore instances on the same scope see the same lines.
        """
        # Lines are always read from storage so every instance sees the same cart.
        self._storage = storage
        self._key = key

    def lines(self) -> List[CartLine]:
        """Purpose: Load persisted cart lines.
        Inputs/Outputs: No inputs; returns a list of CartLine (empty by default).
        Side Effects / State: None.
        Dependencies: ScopedStorage.get_item, _parse.
        Failure Modes: Corrupt entries are skipped with a warning.
        If Removed: Cart views and mutations have no starting state.
        Testing Notes: Store a malformed line and verify it is dropped.
        """
        return self._parse(self._storage.get_item(self._key))

    def _parse(self, raw: Any) -> List[CartLine]:
        # Validate each stored dict; skip anything malformed.
        lines: List[CartLine] = []
        if not isinstance(raw, list):
            return lines
        for entry in raw:
            try:
                lines.append(CartLine.model_validate(entry))
            except ValidationError:
                logger.warning("scope=%s skipping malformed cart line", self._storage.scope)
        return lines

    def _mutate(self, change: Callable[[List[CartLine]], T]) -> T:
        # One locked read-modify-write; persistence failures are logged by storage.
        result: List[T] = []

        def apply(raw: Any) -> List[Dict[str, Any]]:
            lines = self._parse(raw)
            result.append(change(lines))
            return [line.model_dump() for line in lines]

        self._storage.update(self._key, apply)
        return result[0]

    def add_line(self, product: Product, variant: Variant, quantity: int = 1) -> CartLine:
        """Purpose: Append a cart line or merge it into an existing one.
        Inputs/Outputs: Inputs are the product, the chosen variant and a quantity;
            output is the resulting CartLine.
        Side Effects / State: Persists the updated cart.
        Dependencies: _mutate.
        Failure Modes: Quantities below 1 are raised to 1.
        If Removed: Nothing can be added to the cart.
        Testing Notes: Adding the same variant with 2 then 3 yields one line of 5.
        """
        # Merge by variant id; display fields come from the catalog at add-time.
        quantity = max(1, int(quantity or 1))

        def change(lines: List[CartLine]) -> CartLine:
            for index, line in enumerate(lines):
                if line.variant_id == variant.id:
                    lines[index] = line.model_copy(update={"quantity": line.quantity + quantity})
                    return lines[index]
            line = CartLine(
                variant_id=variant.id,
                product_id=product.id,
                title=product.title,
                variant_title=variant.title,
                price=variant.price,
                currency=variant.currency,
                image=product.image,
                quantity=quantity,
            )
            lines.append(line)
            return line

        line = self._mutate(change)
        logger.info("scope=%s added variant=%s qty=%d", self._storage.scope, variant.id, quantity)
        return line

    def set_quantity(self, variant_id: str, quantity: int) -> Optional[CartLine]:
        """Purpose: Set a line quantity, removing the line when it reaches 0.
        Inputs/Outputs: Inputs are a variant id and the new quantity; output is the
            updated line, or None when the line was removed or not found.
        Side Effects / State: Persists the updated cart.
        Dependencies: _mutate.
        Failure Modes: Negative quantities clamp to 0 (removal).
        If Removed: The checkout page cannot edit quantities.
        Testing Notes: Set quantity 0 and verify the line disappears.
        """
        return self._adjust(variant_id, lambda _current: quantity)

    def increment(self, variant_id: str) -> Optional[CartLine]:
        return self._adjust(variant_id, lambda current: current + 1)

    def decrement(self, variant_id: str) -> Optional[CartLine]:
        return self._adjust(variant_id, lambda current: current - 1)

    def _adjust(self, variant_id: str, new_quantity: Callable[[int], int]) -> Optional[CartLine]:
        # Clamp at zero; zero removes the line.
        def change(lines: List[CartLine]) -> Optional[CartLine]:
            for index, line in enumerate(lines):
                if line.variant_id != variant_id:
                    continue
                quantity = max(0, int(new_quantity(line.quantity)))
                if quantity == 0:
                    lines.pop(index)
                    return None
                lines[index] = line.model_copy(update={"quantity": quantity})
                return lines[index]
            return None

        return self._mutate(change)

    def remove_line(self, variant_id: str) -> bool:
        def change(lines: List[CartLine]) -> bool:
            kept = [line for line in lines if line.variant_id != variant_id]
            removed = len(kept) != len(lines)
            lines[:] = kept
            return removed

        return self._mutate(change)

    def clear(self) -> None:
        """Empty the cart and drop its persisted state."""
        self._storage.remove_item(self._key)
        logger.info("scope=%s cart cleared", self._storage.scope)

    def find(self, variant_id: str) -> Optional[CartLine]:
        for line in self.lines():
            if line.variant_id == variant_id:
                return line
        return None

    def count(self) -> int:
        return sum(line.quantity for line in self.lines())

    def total(self) -> float:
        return round(sum(line.price * line.quantity for line in self.lines()), 2)

    def view(self) -> CartView:
        lines = self.lines()
        currency = lines[0].currency if lines else "EUR"
        return CartView(
            lines=lines,
            count=sum(line.quantity for line in lines),
            total=round(sum(line.price * line.quantity for line in lines), 2),
            currency=currency,
        )
