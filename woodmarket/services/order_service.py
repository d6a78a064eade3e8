import logging
from typing import List

from woodmarket.models.entities import ORDER_STATUSES, Order, OrderDetail, OrderLine
from woodmarket.services.errors import (
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidInput,
    NotFound,
)
from woodmarket.storage.base import Storage

logger = logging.getLogger(__name__)


class OrderService:
    """Handles order business logic."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def create_order(self, user_id: int) -> OrderDetail:
        """
        Turn the user's cart into a pending order.

        Runs as a single storage transaction. Every line is checked against
        the current product record before anything is written; stock is then
        taken with a conditional decrement per line, so an order racing
        another one for the last units fails with InsufficientStock instead
        of overselling. Any failure leaves stock, orders and cart untouched.
        """
        with self.storage.transaction():
            cart = self.storage.get_cart_items(user_id)
            if not cart:
                raise EmptyCart()

            lines = []
            for item in cart:
                product = self.storage.get_product(item.product_id)
                if product is None:
                    raise NotFound(f"Product with ID {item.product_id} not found")
                if product.stock_quantity < item.quantity:
                    raise InsufficientStock(
                        product.id,
                        product.stock_quantity,
                        f'Not enough stock for "{product.name}"',
                    )
                lines.append((product, item.quantity))

            total_amount = sum(product.price * quantity for product, quantity in lines)
            order = self.storage.create_order(user_id, total_amount, status="pending")

            for product, quantity in lines:
                self.storage.create_order_item(
                    order_id=order.id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=product.price,
                )
                if not self.storage.decrement_stock(product.id, quantity):
                    current = self.storage.get_product(product.id)
                    available = current.stock_quantity if current else 0
                    logger.warning(
                        "Stock for product %s changed during checkout of user %s (available %s)",
                        product.id, user_id, available,
                    )
                    raise InsufficientStock(product.id, available, f'Not enough stock for "{product.name}"')

            # Consume exactly the rows that were priced; a concurrent checkout
            # of the same cart already took them if fewer are left.
            consumed = self.storage.delete_cart_items(item.id for item in cart)
            if consumed != len(cart):
                logger.warning("Cart of user %s was checked out concurrently", user_id)
                raise EmptyCart()

        logger.info("Order %s created for user %s (total %s)", order.id, user_id, total_amount)
        return self._detail(order)

    def list_orders(self, user_id: int) -> List[OrderDetail]:
        """Get all orders for a specific user, newest first."""
        return [self._detail(order) for order in self.storage.list_orders(user_id)]

    def get_order(self, user_id: int, order_id: int) -> OrderDetail:
        """Get a specific order, ensuring it belongs to the requesting user."""
        order = self.storage.get_order(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.user_id != user_id:
            raise Forbidden("Access denied")
        return self._detail(order)

    def _detail(self, order: Order) -> OrderDetail:
        lines = [
            OrderLine(item=item, product=self.storage.get_product(item.product_id))
            for item in self.storage.get_order_items(order.id)
        ]
        return OrderDetail(order=order, items=lines)

    def update_status(self, supplier_id: int, order_id: int, status: str) -> Order:
        """
        Set an order's status on behalf of a supplier whose products it contains.

        Any status may follow any other; only membership in ORDER_STATUSES is checked.
        """
        if status not in ORDER_STATUSES:
            raise InvalidInput(f"Unknown order status: {status}")
        if self.storage.get_order(order_id) is None:
            raise NotFound("Order not found")

        supplier_ids = set()
        for item in self.storage.get_order_items(order_id):
            product = self.storage.get_product(item.product_id)
            if product is not None:
                supplier_ids.add(product.supplier_id)
        if supplier_id not in supplier_ids:
            raise Forbidden("You can only update orders containing your own products")

        order = self.storage.update_order_status(order_id, status)
        logger.info("Order %s is now %s", order_id, status)
        return order
