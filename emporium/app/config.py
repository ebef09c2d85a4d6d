#!/usr/bin/env python3
"""
Configuration management for the Emporium storefront backend.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration class for the application."""

    # Application
    APP_ENV = os.getenv("APP_ENV", "development").lower()
    STORE_NAME = os.getenv("STORE_NAME", "Emporium")
    CURRENCY = os.getenv("CURRENCY", "INR")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(_DATA_DIR, 'emporium.db')}")

    # Redis Configuration
    USE_REDIS = _env_bool("USE_REDIS", "true")
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB = int(os.getenv("REDIS_DB", 0))

    # Razorpay
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
    RAZORPAY_WEBHOOK_IPS = [ip.strip() for ip in os.getenv("RAZORPAY_WEBHOOK_IPS", "").split(",") if ip.strip()]
    RAZORPAY_API_BASE = os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    RAZORPAY_TIMEOUT = int(os.getenv("RAZORPAY_TIMEOUT", 30))

    # Commerce
    TAX_RATE_BPS = int(os.getenv("TAX_RATE_BPS", 1800))  # 18% GST
    CART_TTL_DAYS = int(os.getenv("CART_TTL_DAYS", 30))
    LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 10))
    SHIPPING_METHODS = {
        "standard": {"id": "standard", "name": "Standard Delivery", "price": 0},
        "express": {"id": "express", "name": "Express Delivery", "price": 15000},
        "overnight": {"id": "overnight", "name": "Overnight Delivery", "price": 30000},
    }

    # Auth
    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 60 * 60 * 24 * 7))
    SESSION_COOKIE = "session_id"
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

    # Rate limits: type -> (max requests, window seconds)
    RATE_LIMITS = {
        "payment": (5, 60),
        "webhook": (100, 60),
        "order_creation": (10, 60),
        "cart": (60, 60),
        "admin": (200, 60),
        "api": (100, 60),
        "auth": (10, 300),
    }

    @classmethod
    def is_development(cls) -> bool:
        return cls.APP_ENV == "development"

    @classmethod
    def debug_print(cls):
        print(f"[CONFIG] APP_ENV={cls.APP_ENV}")
        print(f"[CONFIG] DATABASE_URL={cls.DATABASE_URL}")
        print(f"[CONFIG] USE_REDIS={cls.USE_REDIS} host={cls.REDIS_HOST}:{cls.REDIS_PORT}")
        print(f"[CONFIG] RAZORPAY key set={bool(cls.RAZORPAY_KEY_ID)} webhook secret set={bool(cls.RAZORPAY_WEBHOOK_SECRET)}")

    @classmethod
    def validate(cls):
        """Validate that all required configuration is present."""
        missing = []

        # Gateway credentials are only enforced for production deployments
        if cls.APP_ENV == "production":
            if not cls.RAZORPAY_KEY_ID:
                missing.append("RAZORPAY_KEY_ID")
            if not cls.RAZORPAY_KEY_SECRET:
                missing.append("RAZORPAY_KEY_SECRET")
            if not cls.RAZORPAY_WEBHOOK_SECRET:
                missing.append("RAZORPAY_WEBHOOK_SECRET")

        if not cls.DATABASE_URL:
            missing.append("DATABASE_URL")

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

# Validate configuration on import
Config.validate()
