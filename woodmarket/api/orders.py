from flask import Blueprint, request, jsonify, g
from marshmallow import Schema, fields, validate

from woodmarket.middleware.auth import get_services, require_auth, require_role
from woodmarket.models.entities import ORDER_STATUSES

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


class OrderStatusSchema(Schema):
    status = fields.String(required=True, validate=validate.OneOf(ORDER_STATUSES))


@orders_bp.route("", methods=["POST"])
@require_auth
def create_order():
    """Create an order from the authenticated user's cart."""
    detail = get_services().orders.create_order(g.current_user.id)
    return jsonify(detail.to_dict()), 201


@orders_bp.route("", methods=["GET"])
@require_auth
def list_orders():
    """List orders for the authenticated user."""
    orders = get_services().orders.list_orders(g.current_user.id)
    return jsonify([detail.to_dict() for detail in orders])


@orders_bp.route("/<int:order_id>", methods=["GET"])
@require_auth
def get_order(order_id):
    """Get a specific order."""
    detail = get_services().orders.get_order(g.current_user.id, order_id)
    return jsonify(detail.to_dict())


@orders_bp.route("/<int:order_id>/status", methods=["PATCH"])
@require_role("supplier")
def update_order_status(order_id):
    data = OrderStatusSchema().load(request.json or {})
    order = get_services().orders.update_status(g.current_user.id, order_id, data["status"])
    return jsonify(order.to_dict())
