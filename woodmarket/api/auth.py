from flask import Blueprint, current_app, request, jsonify, g
from marshmallow import Schema, fields, validate

from woodmarket.middleware.auth import get_services, require_auth
from woodmarket.models.entities import USER_ROLES

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


class RegisterSchema(Schema):
    username = fields.String(required=True, validate=validate.Length(min=3, max=50))
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=6, max=72))
    full_name = fields.String(data_key="fullName", required=True, validate=validate.Length(min=2, max=255))
    role = fields.String(load_default="customer", validate=validate.OneOf(USER_ROLES))
    avatar = fields.String(allow_none=True)


class LoginSchema(Schema):
    # Username or email.
    username = fields.String(required=True, validate=validate.Length(min=1))
    password = fields.String(required=True)


class ForgotPasswordSchema(Schema):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    token = fields.String(required=True, validate=validate.Length(min=1))
    password = fields.String(required=True, validate=validate.Length(min=6, max=72))


class ProfileSchema(Schema):
    full_name = fields.String(data_key="fullName", validate=validate.Length(min=2, max=255))
    email = fields.Email()
    avatar = fields.String(allow_none=True)


def _session_payload(session):
    data = session.user.to_public_dict()
    data["token"] = session.token
    data["expiresAt"] = session.expires_at.isoformat()
    return data


@auth_bp.route("/register", methods=["POST"])
def register():
    """Register a new user account and log it in."""
    data = RegisterSchema().load(request.json or {})
    session = get_services().auth.register(**data)
    return jsonify(_session_payload(session)), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """Authenticate and receive a session token."""
    data = LoginSchema().load(request.json or {})
    session = get_services().auth.login(data["username"], data["password"])
    return jsonify(_session_payload(session)), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    get_services().auth.logout(g.session_token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.route("/user", methods=["GET"])
@require_auth
def current_user():
    return jsonify(g.current_user.to_public_dict())


@auth_bp.route("/user", methods=["PATCH"])
@require_auth
def update_profile():
    data = ProfileSchema().load(request.json or {})
    user = get_services().auth.update_profile(g.current_user.id, **data)
    return jsonify(user.to_public_dict())


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """Request a password reset link; the response never reveals whether the email exists."""
    data = ForgotPasswordSchema().load(request.json or {})
    result = get_services().auth.request_password_reset(data["email"])

    body = {"message": result.message}
    if current_app.config.get("EXPOSE_RESET_TOKEN") and result.token:
        body["resetToken"] = result.token
    return jsonify(body), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = ResetPasswordSchema().load(request.json or {})
    get_services().auth.reset_password(data["token"], data["password"])
    return jsonify({"message": "Password updated successfully"}), 200
