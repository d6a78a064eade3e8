from flask import Blueprint, request, jsonify, g
from marshmallow import Schema, fields, validate

from woodmarket.middleware.auth import get_services, require_role

products_bp = Blueprint("products", __name__, url_prefix="/api")


class ProductSchema(Schema):
    name = fields.String(required=True, validate=validate.Length(min=1, max=255))
    description = fields.String(required=True)
    price = fields.Integer(required=True, strict=True, validate=validate.Range(min=0))
    image_url = fields.String(data_key="imageUrl", load_default="")
    stock_quantity = fields.Integer(data_key="stockQuantity", required=True, strict=True, validate=validate.Range(min=0))
    category_id = fields.Integer(data_key="categoryId", required=True, strict=True)
    is_featured = fields.Boolean(data_key="isFeatured", load_default=False)


class ProductFilterSchema(Schema):
    category_id = fields.Integer(data_key="categoryId")
    supplier_id = fields.Integer(data_key="supplierId")
    featured = fields.Boolean()


@products_bp.route("/categories", methods=["GET"])
def list_categories():
    categories = get_services().catalog.list_categories()
    return jsonify([c.to_dict() for c in categories])


@products_bp.route("/products", methods=["GET"])
def list_products():
    """List products, optionally filtered by category, supplier or featured flag."""
    filters = ProductFilterSchema().load(request.args)
    products = get_services().catalog.list_products(**filters)
    return jsonify([p.to_dict() for p in products])


@products_bp.route("/products/supplier", methods=["GET"])
@require_role("supplier")
def supplier_products():
    products = get_services().catalog.list_products(supplier_id=g.current_user.id)
    return jsonify([p.to_dict() for p in products])


@products_bp.route("/products/<int:product_id>", methods=["GET"])
def get_product(product_id):
    product = get_services().catalog.get_product(product_id)
    return jsonify(product.to_dict())


@products_bp.route("/products", methods=["POST"])
@require_role("supplier")
def create_product():
    """Create a product owned by the calling supplier."""
    data = ProductSchema().load(request.json or {})
    product = get_services().catalog.create_product(g.current_user.id, **data)
    return jsonify(product.to_dict()), 201


@products_bp.route("/products/<int:product_id>", methods=["PUT"])
@require_role("supplier")
def update_product(product_id):
    data = ProductSchema(partial=True).load(request.json or {})
    product = get_services().catalog.update_product(g.current_user.id, product_id, **data)
    return jsonify(product.to_dict())


@products_bp.route("/products/<int:product_id>", methods=["DELETE"])
@require_role("supplier")
def delete_product(product_id):
    get_services().catalog.delete_product(g.current_user.id, product_id)
    return "", 204
