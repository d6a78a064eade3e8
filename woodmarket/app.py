import logging
from datetime import timedelta

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from woodmarket.config.settings import Config
from woodmarket.models.database import db, use_immediate_transactions
from woodmarket.api import auth_bp, cart_bp, orders_bp, products_bp
from woodmarket.middleware.error_handler import register_error_handlers
from woodmarket.services import AuthService, PasswordHasher, Services
from woodmarket.storage import MemoryStorage, SqlStorage

logger = logging.getLogger(__name__)


def build_storage(app: Flask):
    backend = app.config["STORAGE_BACKEND"]
    if backend == "memory":
        return MemoryStorage()
    if backend == "sql":
        return SqlStorage(db)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def create_app(config=Config, storage=None) -> Flask:
    """Application factory."""
    app = Flask(__name__)
    app.config.from_object(config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize extensions
    db.init_app(app)

    CORS(app, origins=app.config["CORS_ORIGINS"])

    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[app.config["RATE_LIMIT_DEFAULT"]],
    )
    limiter.limit(app.config["RATE_LIMIT_AUTH"])(auth_bp)

    if storage is None:
        storage = build_storage(app)
    auth = AuthService(
        storage,
        secret=app.config["JWT_SECRET"],
        hasher=PasswordHasher(rounds=app.config["BCRYPT_ROUNDS"]),
        session_ttl=timedelta(minutes=app.config["JWT_EXPIRY_MINUTES"]),
        reset_token_ttl=timedelta(minutes=app.config["RESET_TOKEN_TTL_MINUTES"]),
    )
    app.extensions["woodmarket"] = Services(storage, auth)

    with app.app_context():
        if isinstance(storage, SqlStorage):
            use_immediate_transactions(db.engine)
            db.create_all()
        storage.seed_categories()

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)

    # Register error handlers
    register_error_handlers(app)

    logger.info("WoodMarket API started with %s storage", type(storage).__name__)
    return app
