from woodmarket.api.auth import auth_bp
from woodmarket.api.cart import cart_bp
from woodmarket.api.orders import orders_bp
from woodmarket.api.products import products_bp

__all__ = ["auth_bp", "cart_bp", "orders_bp", "products_bp"]
