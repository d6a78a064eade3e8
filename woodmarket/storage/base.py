"""
Persistence contract used by the services.

Services depend only on ``Storage``; the in-memory and SQL backends are
interchangeable. All methods return entities from ``woodmarket.models.entities``
(never ORM rows) and ``None`` for absent records.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import ContextManager, Iterable, List, Optional

from woodmarket.models.entities import (
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    User,
)


DEFAULT_CATEGORIES = (
    ("Marine Plywood", "layer-group"),
    ("Structural Plywood", "home"),
    ("Decorative Plywood", "drafting-compass"),
    ("Construction Plywood", "tools"),
)


class Storage(ABC):

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """
        Group the calls made inside the ``with`` block into one unit.

        Either every write in the block is kept or, if the block raises,
        none of them is. Blocks may nest; only the outermost one commits.
        """

    # Users

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_reset_token(self, token: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        full_name: str,
        role: str = "customer",
        avatar: Optional[str] = None,
    ) -> User:
        """Insert a user. Raises DuplicateUsername / DuplicateEmail on a unique clash."""

    @abstractmethod
    def update_user(self, user_id: int, **changes) -> Optional[User]: ...

    @abstractmethod
    def set_password_reset_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        """Store a reset token, replacing any outstanding one."""

    @abstractmethod
    def complete_password_reset(self, user_id: int, token: str, password_hash: str) -> bool:
        """
        Replace the password and clear the token in one update, but only if
        the user still holds ``token``. Returns False when it was already used.
        """

    @abstractmethod
    def revoke_token(self, jti: str, expires_at: datetime) -> None: ...

    @abstractmethod
    def is_token_revoked(self, jti: str) -> bool: ...

    # Catalog

    @abstractmethod
    def list_categories(self) -> List[Category]: ...

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]: ...

    @abstractmethod
    def create_category(self, name: str, icon: str) -> Category: ...

    @abstractmethod
    def list_products(
        self,
        category_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
        featured: Optional[bool] = None,
    ) -> List[Product]: ...

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        """Always reads the current record, never a cached copy."""

    @abstractmethod
    def create_product(self, **fields) -> Product: ...

    @abstractmethod
    def update_product(self, product_id: int, **changes) -> Optional[Product]: ...

    @abstractmethod
    def delete_product(self, product_id: int) -> bool: ...

    @abstractmethod
    def decrement_stock(self, product_id: int, amount: int) -> bool:
        """
        Atomically subtract ``amount`` if at least that much is in stock.

        Returns False, leaving stock untouched, when it is not.
        """

    # Cart

    @abstractmethod
    def get_cart_items(self, user_id: int) -> List[CartItem]: ...

    @abstractmethod
    def get_cart_item(self, item_id: int) -> Optional[CartItem]: ...

    @abstractmethod
    def find_cart_item(self, user_id: int, product_id: int) -> Optional[CartItem]: ...

    @abstractmethod
    def add_cart_item(self, user_id: int, product_id: int, quantity: int) -> CartItem:
        """Insert, or add ``quantity`` to the existing (user, product) row."""

    @abstractmethod
    def update_cart_item(self, item_id: int, quantity: int) -> Optional[CartItem]:
        """Set the quantity; a quantity <= 0 deletes the row and returns None."""

    @abstractmethod
    def remove_cart_item(self, item_id: int) -> bool: ...

    @abstractmethod
    def clear_cart(self, user_id: int) -> int: ...

    @abstractmethod
    def delete_cart_items(self, item_ids: Iterable[int]) -> int:
        """Delete the given rows and return how many actually existed."""

    # Orders

    @abstractmethod
    def create_order(self, user_id: int, total_amount: int, status: str = "pending") -> Order: ...

    @abstractmethod
    def create_order_item(self, order_id: int, product_id: int, quantity: int, unit_price: int) -> OrderItem: ...

    @abstractmethod
    def list_orders(self, user_id: int) -> List[Order]:
        """Orders of one user, newest first."""

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    def get_order_items(self, order_id: int) -> List[OrderItem]: ...

    @abstractmethod
    def update_order_status(self, order_id: int, status: str) -> Optional[Order]: ...

    def seed_categories(self) -> None:
        """Create the default plywood categories when none exist yet."""
        if self.list_categories():
            return
        for name, icon in DEFAULT_CATEGORIES:
            self.create_category(name, icon)
