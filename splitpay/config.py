import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_float(name: str, default: float) -> float:
        return float(os.getenv(name, str(default)))

    @property
    def APP_ENV(self) -> str:
        return os.getenv("APP_ENV", "development").strip().lower()

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 10)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def STRIPE_SECRET_KEY(self) -> str:
        return os.getenv("STRIPE_SECRET_KEY", "")

    @property
    def STRIPE_WEBHOOK_SECRET(self) -> str:
        return os.getenv("STRIPE_WEBHOOK_SECRET", "")

    @property
    def PAYPAL_CLIENT_ID(self) -> str:
        return os.getenv("PAYPAL_CLIENT_ID", "")

    @property
    def PAYPAL_CLIENT_SECRET(self) -> str:
        return os.getenv("PAYPAL_CLIENT_SECRET", "")

    @property
    def PAYPAL_API_BASE(self) -> str:
        return os.getenv("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com")

    @property
    def PAYPAL_WEBHOOK_ID(self) -> str:
        return os.getenv("PAYPAL_WEBHOOK_ID", "")

    @property
    def PAYPAL_PARTNER_MERCHANT_ID(self) -> str:
        return os.getenv("PAYPAL_PARTNER_MERCHANT_ID", "")

    @property
    def GATEWAY_TIMEOUT_SECONDS(self) -> float:
        return self._get_float("GATEWAY_TIMEOUT_SECONDS", 30.0)

    @property
    def GATEWAY_ATTEMPT_STALE_SECONDS(self) -> int:
        return self._get_int("GATEWAY_ATTEMPT_STALE_SECONDS", 120)

    @property
    def EXCHANGE_RATE_URL(self) -> str:
        return os.getenv("EXCHANGE_RATE_URL", "")

    @property
    def EXCHANGE_RATE_TTL_SECONDS(self) -> int:
        return self._get_int("EXCHANGE_RATE_TTL_SECONDS", 3600)

    @property
    def PLATFORM_FEE_PER_THOUSAND(self) -> int:
        return self._get_int("PLATFORM_FEE_PER_THOUSAND", 100)

    @property
    def PLATFORM_FIXED_FEE_CENTS(self) -> int:
        return self._get_int("PLATFORM_FIXED_FEE_CENTS", 50)

    @property
    def PRICE_TOLERANCE_CENTS(self) -> int:
        return self._get_int("PRICE_TOLERANCE_CENTS", 1)

    @property
    def DOUBLE_CHARGE_WINDOW_SECONDS(self) -> int:
        return self._get_int("DOUBLE_CHARGE_WINDOW_SECONDS", 180)

    @property
    def UPGRADE_DOUBLE_CHARGE_WINDOW_SECONDS(self) -> int:
        return self._get_int("UPGRADE_DOUBLE_CHARGE_WINDOW_SECONDS", 10)

    @property
    def SCA_COMPLETION_MINUTES(self) -> int:
        return self._get_int("SCA_COMPLETION_MINUTES", 15)

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
