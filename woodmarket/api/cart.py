from flask import Blueprint, request, jsonify, g
from marshmallow import Schema, fields, validate

from woodmarket.middleware.auth import get_services, require_auth
from woodmarket.services import compute_totals

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


class AddToCartSchema(Schema):
    product_id = fields.Integer(data_key="productId", required=True, strict=True)
    quantity = fields.Integer(required=True, strict=True, validate=validate.Range(min=1))


class UpdateCartItemSchema(Schema):
    # Zero removes the item.
    quantity = fields.Integer(required=True, strict=True, validate=validate.Range(min=0))


@cart_bp.route("", methods=["GET"])
@require_auth
def get_cart():
    """The user's cart lines with product detail and totals."""
    lines = get_services().cart.get_cart(g.current_user.id)
    return jsonify({
        "items": [line.to_dict() for line in lines],
        "totals": compute_totals(lines).to_dict(),
    })


@cart_bp.route("", methods=["POST"])
@require_auth
def add_to_cart():
    data = AddToCartSchema().load(request.json or {})
    line = get_services().cart.add_item(g.current_user.id, data["product_id"], data["quantity"])
    return jsonify(line.to_dict()), 201


@cart_bp.route("/<int:item_id>", methods=["PUT"])
@require_auth
def update_cart_item(item_id):
    data = UpdateCartItemSchema().load(request.json or {})
    cart = get_services().cart
    cart.get_owned_item(g.current_user.id, item_id)

    line = cart.set_quantity(item_id, data["quantity"])
    if line is None:
        return jsonify({"message": "Item removed from cart"}), 200
    return jsonify(line.to_dict())


@cart_bp.route("/<int:item_id>", methods=["DELETE"])
@require_auth
def remove_cart_item(item_id):
    cart = get_services().cart
    cart.get_owned_item(g.current_user.id, item_id)
    cart.remove_item(item_id)
    return "", 204


@cart_bp.route("", methods=["DELETE"])
@require_auth
def clear_cart():
    get_services().cart.clear(g.current_user.id)
    return "", 204
