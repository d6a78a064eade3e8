"""Relational storage on top of the Flask-SQLAlchemy session."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from woodmarket.models import database as tables
from woodmarket.models.database import db
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

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; every timestamp is written in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _user(row) -> Optional[User]:
    if row is None:
        return None
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name,
        role=row.role,
        avatar=row.avatar,
        reset_token=row.reset_token,
        reset_token_expiry=_aware(row.reset_token_expiry),
        created_at=_aware(row.created_at),
    )


def _category(row) -> Optional[Category]:
    if row is None:
        return None
    return Category(id=row.id, name=row.name, icon=row.icon)


def _product(row) -> Optional[Product]:
    if row is None:
        return None
    return Product(
        id=row.id,
        name=row.name,
        description=row.description,
        price=row.price,
        stock_quantity=row.stock_quantity,
        supplier_id=row.supplier_id,
        category_id=row.category_id,
        image_url=row.image_url,
        is_featured=bool(row.is_featured),
        created_at=_aware(row.created_at),
    )


def _cart_item(row) -> Optional[CartItem]:
    if row is None:
        return None
    return CartItem(
        id=row.id,
        user_id=row.user_id,
        product_id=row.product_id,
        quantity=row.quantity,
        added_at=_aware(row.added_at),
    )


def _order(row) -> Optional[Order]:
    if row is None:
        return None
    return Order(
        id=row.id,
        user_id=row.user_id,
        total_amount=row.total_amount,
        status=row.status,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _order_item(row) -> OrderItem:
    return OrderItem(
        id=row.id,
        order_id=row.order_id,
        product_id=row.product_id,
        quantity=row.quantity,
        unit_price=row.unit_price,
    )


class SqlStorage(Storage):
    """
    Storage backed by the application's SQLAlchemy database.

    Outside a ``transaction()`` block every write commits on its own. Inside
    one, writes are flushed and the outermost block commits or rolls back.
    Must be used within a Flask application context.
    """

    def __init__(self, database=db):
        self.db = database
        self._local = threading.local()

    @property
    def session(self):
        return self.db.session

    @property
    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @contextmanager
    def transaction(self):
        outermost = self._depth == 0
        self._local.depth = self._depth + 1
        try:
            yield
            if outermost:
                self.session.commit()
        except BaseException:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._local.depth -= 1

    def _save(self) -> None:
        if self._depth:
            self.session.flush()
        else:
            self.session.commit()

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        return _user(self.session.get(tables.User, user_id))

    def get_user_by_username(self, username: str) -> Optional[User]:
        return _user(self.session.execute(
            select(tables.User).filter_by(username=username)
        ).scalar_one_or_none())

    def get_user_by_email(self, email: str) -> Optional[User]:
        return _user(self.session.execute(
            select(tables.User).filter_by(email=email)
        ).scalar_one_or_none())

    def get_user_by_reset_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        return _user(self.session.execute(
            select(tables.User).filter_by(reset_token=token)
        ).scalar_one_or_none())

    def create_user(self, username, email, password_hash, full_name, role="customer", avatar=None) -> User:
        row = tables.User(
            username=username,
            email=email,
            password_hash=password_hash,
            full_name=full_name,
            role=role,
            avatar=avatar,
        )
        self.session.add(row)
        try:
            self._save()
        except IntegrityError:
            self.session.rollback()
            logger.info("Unique constraint hit while registering %s", username)
            if self.get_user_by_username(username):
                raise DuplicateUsername()
            raise DuplicateEmail()
        return _user(row)

    def update_user(self, user_id: int, **changes) -> Optional[User]:
        row = self.session.get(tables.User, user_id)
        if row is None:
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        try:
            self._save()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateEmail()
        return _user(row)

    def set_password_reset_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        self.session.execute(
            update(tables.User)
            .where(tables.User.id == user_id)
            .values(reset_token=token, reset_token_expiry=expires_at)
        )
        self._save()

    def complete_password_reset(self, user_id: int, token: str, password_hash: str) -> bool:
        result = self.session.execute(
            update(tables.User)
            .where(tables.User.id == user_id, tables.User.reset_token == token)
            .values(password_hash=password_hash, reset_token=None, reset_token_expiry=None)
        )
        self._save()
        return result.rowcount == 1

    def revoke_token(self, jti: str, expires_at: datetime) -> None:
        self.session.merge(tables.RevokedToken(jti=jti, expires_at=expires_at))
        self._save()

    def is_token_revoked(self, jti: str) -> bool:
        return self.session.get(tables.RevokedToken, jti) is not None

    # Catalog

    def list_categories(self) -> List[Category]:
        rows = self.session.execute(select(tables.Category).order_by(tables.Category.id)).scalars()
        return [_category(row) for row in rows]

    def get_category(self, category_id: int) -> Optional[Category]:
        return _category(self.session.get(tables.Category, category_id))

    def create_category(self, name: str, icon: str) -> Category:
        row = tables.Category(name=name, icon=icon)
        self.session.add(row)
        self._save()
        return _category(row)

    def list_products(self, category_id=None, supplier_id=None, featured=None) -> List[Product]:
        query = select(tables.Product)
        if category_id is not None:
            query = query.filter_by(category_id=category_id)
        if supplier_id is not None:
            query = query.filter_by(supplier_id=supplier_id)
        if featured is not None:
            query = query.filter_by(is_featured=featured)
        rows = self.session.execute(query.order_by(tables.Product.id)).scalars()
        return [_product(row) for row in rows]

    def get_product(self, product_id: int) -> Optional[Product]:
        return _product(self.session.get(tables.Product, product_id, populate_existing=True))

    def create_product(self, **fields) -> Product:
        row = tables.Product(**fields)
        self.session.add(row)
        self._save()
        return _product(row)

    def update_product(self, product_id: int, **changes) -> Optional[Product]:
        row = self.session.get(tables.Product, product_id)
        if row is None:
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        self._save()
        return _product(row)

    def delete_product(self, product_id: int) -> bool:
        row = self.session.get(tables.Product, product_id)
        if row is None:
            return False
        self.session.execute(delete(tables.CartItem).where(tables.CartItem.product_id == product_id))
        self.session.delete(row)
        self._save()
        return True

    def decrement_stock(self, product_id: int, amount: int) -> bool:
        result = self.session.execute(
            update(tables.Product)
            .where(tables.Product.id == product_id, tables.Product.stock_quantity >= amount)
            .values(stock_quantity=tables.Product.stock_quantity - amount)
            .execution_options(synchronize_session=False)
        )
        self._save()
        return result.rowcount == 1

    # Cart

    def get_cart_items(self, user_id: int) -> List[CartItem]:
        rows = self.session.execute(
            select(tables.CartItem).filter_by(user_id=user_id).order_by(tables.CartItem.id)
        ).scalars()
        return [_cart_item(row) for row in rows]

    def get_cart_item(self, item_id: int) -> Optional[CartItem]:
        return _cart_item(self.session.get(tables.CartItem, item_id))

    def find_cart_item(self, user_id: int, product_id: int) -> Optional[CartItem]:
        return _cart_item(self.session.execute(
            select(tables.CartItem).filter_by(user_id=user_id, product_id=product_id)
        ).scalar_one_or_none())

    def _merge_cart_item(self, user_id: int, product_id: int, quantity: int) -> bool:
        merged = self.session.execute(
            update(tables.CartItem)
            .where(tables.CartItem.user_id == user_id, tables.CartItem.product_id == product_id)
            .values(quantity=tables.CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        return merged.rowcount > 0

    def add_cart_item(self, user_id: int, product_id: int, quantity: int) -> CartItem:
        if not self._merge_cart_item(user_id, product_id, quantity):
            self.session.add(tables.CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
        try:
            self._save()
        except IntegrityError:
            # A concurrent first add inserted the same (user, product) row.
            if self._depth:
                raise
            self.session.rollback()
            logger.info("Cart row for user %s and product %s appeared concurrently; merging", user_id, product_id)
            self._merge_cart_item(user_id, product_id, quantity)
            self._save()
        row = self.session.execute(
            select(tables.CartItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        return _cart_item(row)

    def update_cart_item(self, item_id: int, quantity: int) -> Optional[CartItem]:
        row = self.session.get(tables.CartItem, item_id)
        if row is None:
            return None
        if quantity <= 0:
            self.session.delete(row)
            self._save()
            return None
        row.quantity = quantity
        self._save()
        return _cart_item(row)

    def remove_cart_item(self, item_id: int) -> bool:
        return self.delete_cart_items([item_id]) == 1

    def clear_cart(self, user_id: int) -> int:
        result = self.session.execute(
            delete(tables.CartItem)
            .where(tables.CartItem.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        self._save()
        self.session.expire_all()
        return result.rowcount

    def delete_cart_items(self, item_ids: Iterable[int]) -> int:
        item_ids = list(item_ids)
        if not item_ids:
            return 0
        result = self.session.execute(
            delete(tables.CartItem)
            .where(tables.CartItem.id.in_(item_ids))
            .execution_options(synchronize_session=False)
        )
        self._save()
        self.session.expire_all()
        return result.rowcount

    # Orders

    def create_order(self, user_id: int, total_amount: int, status: str = "pending") -> Order:
        row = tables.Order(user_id=user_id, total_amount=total_amount, status=status)
        self.session.add(row)
        self._save()
        return _order(row)

    def create_order_item(self, order_id, product_id, quantity, unit_price) -> OrderItem:
        row = tables.OrderItem(
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
        )
        self.session.add(row)
        self._save()
        return _order_item(row)

    def list_orders(self, user_id: int) -> List[Order]:
        rows = self.session.execute(
            select(tables.Order)
            .filter_by(user_id=user_id)
            .order_by(tables.Order.created_at.desc(), tables.Order.id.desc())
        ).unique().scalars()
        return [_order(row) for row in rows]

    def get_order(self, order_id: int) -> Optional[Order]:
        return _order(self.session.get(tables.Order, order_id))

    def get_order_items(self, order_id: int) -> List[OrderItem]:
        rows = self.session.execute(
            select(tables.OrderItem).filter_by(order_id=order_id).order_by(tables.OrderItem.id)
        ).scalars()
        return [_order_item(row) for row in rows]

    def update_order_status(self, order_id: int, status: str) -> Optional[Order]:
        row = self.session.get(tables.Order, order_id)
        if row is None:
            return None
        row.status = status
        self._save()
        return _order(row)
