from woodmarket.services.auth_service import AuthService
from woodmarket.services.cart_service import CartService, compute_totals
from woodmarket.services.catalog_service import CatalogService
from woodmarket.services.order_service import OrderService
from woodmarket.services.passwords import PasswordHasher


class Services:
    """The service objects of one application, sharing a storage backend."""

    def __init__(self, storage, auth: AuthService):
        self.storage = storage
        self.auth = auth
        self.catalog = CatalogService(storage)
        self.cart = CartService(storage)
        self.orders = OrderService(storage)


__all__ = [
    "AuthService",
    "CartService",
    "CatalogService",
    "OrderService",
    "PasswordHasher",
    "Services",
    "compute_totals",
]
