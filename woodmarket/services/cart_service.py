import logging
from typing import Iterable, List, Optional

from woodmarket.models.entities import CartItem, CartLine, CartTotals
from woodmarket.services.errors import InsufficientStock, InvalidInput, NotFound
from woodmarket.storage.base import Storage

logger = logging.getLogger(__name__)

TAX_RATE_PERCENT = 8
FREE_SHIPPING_THRESHOLD = 30000
FLAT_SHIPPING = 1500


def compute_totals(lines: Iterable[CartLine]) -> CartTotals:
    """
    Price a set of cart lines. All amounts are integer cents.

    Tax is 8% rounded half-up to the cent; shipping is free from 300.00 on.
    """
    subtotal = sum(line.product.price * line.item.quantity for line in lines)
    tax = (subtotal * TAX_RATE_PERCENT + 50) // 100
    shipping = 0 if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING
    return CartTotals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)


class CartService:
    """
    Per-user cart of product quantities.

    Item-level operations are not identity-aware: callers resolve and check
    ownership with ``get_owned_item`` before changing an item by id.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_cart(self, user_id: int) -> List[CartLine]:
        lines = []
        for item in self.storage.get_cart_items(user_id):
            product = self.storage.get_product(item.product_id)
            if product is None:
                continue
            lines.append(CartLine(item=item, product=product))
        return lines

    def totals(self, user_id: int) -> CartTotals:
        return compute_totals(self.get_cart(user_id))

    def add_item(self, user_id: int, product_id: int, quantity: int) -> CartLine:
        """Add ``quantity`` units, merging into an existing line for the same product."""
        if quantity < 1:
            raise InvalidInput("Quantity must be at least 1")

        product = self.storage.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")
        if product.stock_quantity < quantity:
            raise InsufficientStock(product.id, product.stock_quantity)

        item = self.storage.add_cart_item(user_id, product_id, quantity)
        return CartLine(item=item, product=product)

    def get_owned_item(self, user_id: int, item_id: int) -> CartItem:
        item = self.storage.get_cart_item(item_id)
        if item is None or item.user_id != user_id:
            raise NotFound("Cart item not found or does not belong to you")
        return item

    def set_quantity(self, item_id: int, quantity: int) -> Optional[CartLine]:
        """Replace an item's quantity; zero or less removes it and returns None."""
        item = self.storage.update_cart_item(item_id, quantity)
        if item is None:
            return None
        product = self.storage.get_product(item.product_id)
        if product is None:
            raise NotFound("Product not found")
        return CartLine(item=item, product=product)

    def remove_item(self, item_id: int) -> None:
        self.storage.remove_cart_item(item_id)

    def clear(self, user_id: int) -> None:
        removed = self.storage.clear_cart(user_id)
        logger.debug("Cleared %s items from cart of user %s", removed, user_id)
