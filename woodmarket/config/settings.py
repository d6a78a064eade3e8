import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Application configuration loaded from environment variables."""

    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///woodmarket.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" or "memory"
    STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "sql")

    JWT_SECRET = os.environ.get("JWT_SECRET")
    JWT_EXPIRY_MINUTES = int(os.environ.get("JWT_EXPIRY_MINUTES", "1440"))
    RESET_TOKEN_TTL_MINUTES = int(os.environ.get("RESET_TOKEN_TTL_MINUTES", "60"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Development aid: return the reset token in the forgot-password response.
    EXPOSE_RESET_TOKEN = _flag("EXPOSE_RESET_TOKEN")

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "https://app.example.com").split(",")

    RATELIMIT_ENABLED = _flag("RATELIMIT_ENABLED", "true")
    RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "100/hour")
    RATE_LIMIT_AUTH = os.environ.get("RATE_LIMIT_AUTH", "10/minute")
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STORAGE_BACKEND = "sql"
    JWT_SECRET = "test-jwt-secret-with-enough-length"
    BCRYPT_ROUNDS = 4
    EXPOSE_RESET_TOKEN = True
    RATELIMIT_ENABLED = False
    CORS_ORIGINS = ["http://localhost"]
    LOG_LEVEL = "DEBUG"
