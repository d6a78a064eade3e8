"""Storage-independent records passed between the services and the HTTP layer.

Money fields are integers in minor currency units (cents).
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


USER_ROLES = ("customer", "supplier")
ORDER_STATUSES = ("pending", "paid", "shipped", "delivered", "cancelled")


@dataclass
class User:
    id: int
    username: str
    email: str
    password_hash: str
    full_name: str
    role: str = "customer"
    avatar: Optional[str] = None
    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize without the password hash or the reset token."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role,
            "avatar": self.avatar,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass
class Category:
    id: int
    name: str
    icon: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Product:
    id: int
    name: str
    description: str
    price: int
    stock_quantity: int
    supplier_id: int
    category_id: int
    image_url: str = ""
    is_featured: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "imageUrl": self.image_url,
            "stockQuantity": self.stock_quantity,
            "supplierId": self.supplier_id,
            "categoryId": self.category_id,
            "isFeatured": self.is_featured,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass
class CartItem:
    id: int
    user_id: int
    product_id: int
    quantity: int
    added_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "addedAt": _isoformat(self.added_at),
        }


@dataclass
class Order:
    id: int
    user_id: int
    total_amount: int
    status: str = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status,
            "totalAmount": self.total_amount,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


@dataclass
class OrderItem:
    id: int
    order_id: int
    product_id: int
    quantity: int
    unit_price: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
        }


@dataclass
class CartLine:
    """A cart row merged with the current product record."""

    item: CartItem
    product: Product

    @property
    def line_total(self) -> int:
        return self.product.price * self.item.quantity

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data["product"] = self.product.to_dict()
        return data


@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    tax: int
    shipping: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OrderLine:
    """An order row with the product it refers to, if that product still exists."""

    item: OrderItem
    product: Optional[Product] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data["product"] = self.product.to_dict() if self.product else None
        return data


@dataclass
class OrderDetail:
    order: Order
    items: List[OrderLine] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.order.to_dict()
        data["items"] = [line.to_dict() for line in self.items]
        return data


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
