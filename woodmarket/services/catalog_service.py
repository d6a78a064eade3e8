import logging
from typing import List, Optional

from woodmarket.models.entities import Category, Product
from woodmarket.services.errors import Forbidden, InvalidInput, NotFound
from woodmarket.storage.base import Storage

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "name",
    "description",
    "price",
    "image_url",
    "stock_quantity",
    "category_id",
    "is_featured",
)


class CatalogService:
    """Categories and supplier-owned products."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def list_categories(self) -> List[Category]:
        return self.storage.list_categories()

    def list_products(
        self,
        category_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
        featured: Optional[bool] = None,
    ) -> List[Product]:
        return self.storage.list_products(category_id=category_id, supplier_id=supplier_id, featured=featured)

    def get_product(self, product_id: int) -> Product:
        product = self.storage.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    def create_product(self, supplier_id: int, **fields) -> Product:
        data = self._clean(fields)
        missing = [name for name in ("name", "description", "price", "stock_quantity", "category_id") if name not in data]
        if missing:
            raise InvalidInput(f"Missing fields: {', '.join(missing)}")
        self._check_category(data["category_id"])

        product = self.storage.create_product(supplier_id=supplier_id, **data)
        logger.info("Supplier %s created product %s", supplier_id, product.id)
        return product

    def update_product(self, supplier_id: int, product_id: int, **changes) -> Product:
        self._owned(supplier_id, product_id, "update")
        data = self._clean(changes)
        if "category_id" in data:
            self._check_category(data["category_id"])
        return self.storage.update_product(product_id, **data)

    def delete_product(self, supplier_id: int, product_id: int) -> None:
        self._owned(supplier_id, product_id, "delete")
        self.storage.delete_product(product_id)
        logger.info("Supplier %s deleted product %s", supplier_id, product_id)

    def _owned(self, supplier_id: int, product_id: int, action: str) -> Product:
        product = self.get_product(product_id)
        if product.supplier_id != supplier_id:
            raise Forbidden(f"You can only {action} your own products")
        return product

    def _check_category(self, category_id: int) -> None:
        if self.storage.get_category(category_id) is None:
            raise InvalidInput(f"Unknown category: {category_id}")

    @staticmethod
    def _clean(fields: dict) -> dict:
        data = {k: v for k, v in fields.items() if k in PRODUCT_FIELDS}
        if data.get("price", 0) < 0:
            raise InvalidInput("Price must not be negative")
        if data.get("stock_quantity", 0) < 0:
            raise InvalidInput("Stock quantity must not be negative")
        return data
