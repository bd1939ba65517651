from decimal import Decimal
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --- Database ---
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "storefront"

    # --- Auth ---
    SECRET_KEY: str = "secret"
    REFRESH_SECRET_KEY: str = "refresh_secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # --- Pricing ---
    CURRENCY: str = "USD"
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("100")
    SHIPPING_FEE: Decimal = Decimal("10")
    TAX_RATE: Decimal = Decimal("0.08")

    # --- Catalog / cart ---
    LOW_STOCK_THRESHOLD: int = 10
    MAX_CART_ITEM_QUANTITY: int = 100

    # --- Checkout ---
    CHECKOUT_RECOVERY_SECONDS: int = 300

    # --- HTTP ---
    RATE_LIMIT_ENABLED: bool = True
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # --- Email ---
    EMAIL_BACKEND: str = "console"  # console | smtp | memory
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "orders@storefront.local"
    ADMIN_EMAIL: str = "admin@storefront.local"
    STORE_NAME: str = "Storefront"

    class Config:
        env_file = ".env"


settings = Settings()
