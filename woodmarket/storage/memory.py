"""In-process storage backed by dicts, used by tests and ``STORAGE_BACKEND=memory``."""

import copy
import itertools
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from woodmarket.models.entities import (
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    User,
)
from woodmarket.services.errors import DuplicateEmail, DuplicateUsername
from woodmarket.storage.base import Storage


_TABLES = ("users", "categories", "products", "cart_items", "orders", "order_items", "revoked")


def _now():
    return datetime.now(timezone.utc)


class MemoryStorage(Storage):
    """
    Tables of records guarded by one re-entrant lock.

    A transaction holds the lock for its whole duration and restores a
    snapshot of every table if the block raises, so concurrent callers see
    either all of its writes or none.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self.users: Dict[int, User] = {}
        self.categories: Dict[int, Category] = {}
        self.products: Dict[int, Product] = {}
        self.cart_items: Dict[int, CartItem] = {}
        self.orders: Dict[int, Order] = {}
        self.order_items: Dict[int, OrderItem] = {}
        self.revoked: Dict[str, datetime] = {}
        self._ids = {name: itertools.count(1) for name in _TABLES}

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    @contextmanager
    def transaction(self):
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self):
        # Id counters are not rolled back, like sequences in a real database.
        return {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}

    def _restore(self, snapshot) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def _find_user(self, **criteria) -> Optional[User]:
        with self._lock:
            for user in self.users.values():
                if all(getattr(user, key) == value for key, value in criteria.items()):
                    return replace(user)
        return None

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._find_user(username=username)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._find_user(email=email)

    def get_user_by_reset_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        return self._find_user(reset_token=token)

    def create_user(self, username, email, password_hash, full_name, role="customer", avatar=None) -> User:
        with self._lock:
            if self._find_user(username=username):
                raise DuplicateUsername()
            if self._find_user(email=email):
                raise DuplicateEmail()
            user = User(
                id=self._next_id("users"),
                username=username,
                email=email,
                password_hash=password_hash,
                full_name=full_name,
                role=role,
                avatar=avatar,
                created_at=_now(),
            )
            self.users[user.id] = user
            return replace(user)

    def update_user(self, user_id: int, **changes) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                return None
            email = changes.get("email")
            if email is not None and email != user.email and self._find_user(email=email):
                raise DuplicateEmail()
            self.users[user_id] = replace(user, **changes)
            return replace(self.users[user_id])

    def set_password_reset_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        self.update_user(user_id, reset_token=token, reset_token_expiry=expires_at)

    def complete_password_reset(self, user_id: int, token: str, password_hash: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if not user or user.reset_token != token:
                return False
            self.users[user_id] = replace(
                user,
                password_hash=password_hash,
                reset_token=None,
                reset_token_expiry=None,
            )
            return True

    def revoke_token(self, jti: str, expires_at: datetime) -> None:
        with self._lock:
            self.revoked[jti] = expires_at

    def is_token_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self.revoked

    # Catalog

    def list_categories(self) -> List[Category]:
        with self._lock:
            return [replace(c) for c in self.categories.values()]

    def get_category(self, category_id: int) -> Optional[Category]:
        with self._lock:
            category = self.categories.get(category_id)
            return replace(category) if category else None

    def create_category(self, name: str, icon: str) -> Category:
        with self._lock:
            category = Category(id=self._next_id("categories"), name=name, icon=icon)
            self.categories[category.id] = category
            return replace(category)

    def list_products(self, category_id=None, supplier_id=None, featured=None) -> List[Product]:
        with self._lock:
            products = list(self.products.values())
        if category_id is not None:
            products = [p for p in products if p.category_id == category_id]
        if supplier_id is not None:
            products = [p for p in products if p.supplier_id == supplier_id]
        if featured is not None:
            products = [p for p in products if p.is_featured == featured]
        return [replace(p) for p in products]

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._lock:
            product = self.products.get(product_id)
            return replace(product) if product else None

    def create_product(self, **fields) -> Product:
        with self._lock:
            product = Product(id=self._next_id("products"), created_at=_now(), **fields)
            self.products[product.id] = product
            return replace(product)

    def update_product(self, product_id: int, **changes) -> Optional[Product]:
        with self._lock:
            product = self.products.get(product_id)
            if not product:
                return None
            self.products[product_id] = replace(product, **changes)
            return replace(self.products[product_id])

    def delete_product(self, product_id: int) -> bool:
        with self._lock:
            if self.products.pop(product_id, None) is None:
                return False
            for item_id in [i.id for i in self.cart_items.values() if i.product_id == product_id]:
                del self.cart_items[item_id]
            return True

    def decrement_stock(self, product_id: int, amount: int) -> bool:
        with self._lock:
            product = self.products.get(product_id)
            if not product or product.stock_quantity < amount:
                return False
            self.products[product_id] = replace(product, stock_quantity=product.stock_quantity - amount)
            return True

    # Cart

    def get_cart_items(self, user_id: int) -> List[CartItem]:
        with self._lock:
            return [replace(i) for i in self.cart_items.values() if i.user_id == user_id]

    def get_cart_item(self, item_id: int) -> Optional[CartItem]:
        with self._lock:
            item = self.cart_items.get(item_id)
            return replace(item) if item else None

    def find_cart_item(self, user_id: int, product_id: int) -> Optional[CartItem]:
        with self._lock:
            for item in self.cart_items.values():
                if item.user_id == user_id and item.product_id == product_id:
                    return replace(item)
        return None

    def add_cart_item(self, user_id: int, product_id: int, quantity: int) -> CartItem:
        with self._lock:
            existing = self.find_cart_item(user_id, product_id)
            if existing:
                return self.update_cart_item(existing.id, existing.quantity + quantity)
            item = CartItem(
                id=self._next_id("cart_items"),
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                added_at=_now(),
            )
            self.cart_items[item.id] = item
            return replace(item)

    def update_cart_item(self, item_id: int, quantity: int) -> Optional[CartItem]:
        with self._lock:
            item = self.cart_items.get(item_id)
            if not item:
                return None
            if quantity <= 0:
                del self.cart_items[item_id]
                return None
            self.cart_items[item_id] = replace(item, quantity=quantity)
            return replace(self.cart_items[item_id])

    def remove_cart_item(self, item_id: int) -> bool:
        with self._lock:
            return self.cart_items.pop(item_id, None) is not None

    def clear_cart(self, user_id: int) -> int:
        with self._lock:
            return self.delete_cart_items([i.id for i in self.cart_items.values() if i.user_id == user_id])

    def delete_cart_items(self, item_ids: Iterable[int]) -> int:
        with self._lock:
            return sum(1 for item_id in list(item_ids) if self.cart_items.pop(item_id, None) is not None)

    # Orders

    def create_order(self, user_id: int, total_amount: int, status: str = "pending") -> Order:
        with self._lock:
            now = _now()
            order = Order(
                id=self._next_id("orders"),
                user_id=user_id,
                total_amount=total_amount,
                status=status,
                created_at=now,
                updated_at=now,
            )
            self.orders[order.id] = order
            return replace(order)

    def create_order_item(self, order_id, product_id, quantity, unit_price) -> OrderItem:
        with self._lock:
            item = OrderItem(
                id=self._next_id("order_items"),
                order_id=order_id,
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
            )
            self.order_items[item.id] = item
            return replace(item)

    def list_orders(self, user_id: int) -> List[Order]:
        with self._lock:
            orders = [replace(o) for o in self.orders.values() if o.user_id == user_id]
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._lock:
            order = self.orders.get(order_id)
            return replace(order) if order else None

    def get_order_items(self, order_id: int) -> List[OrderItem]:
        with self._lock:
            return [replace(i) for i in self.order_items.values() if i.order_id == order_id]

    def update_order_status(self, order_id: int, status: str) -> Optional[Order]:
        with self._lock:
            order = self.orders.get(order_id)
            if not order:
                return None
            self.orders[order_id] = replace(order, status=status, updated_at=_now())
            return replace(self.orders[order_id])
