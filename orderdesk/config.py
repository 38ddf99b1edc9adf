import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

# .env lives at the project root, above the package
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


def _split(value: str) -> frozenset:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    gateway_payment_methods: frozenset = field(default_factory=lambda: frozenset({"Stripe"}))
    default_currency: str = "inr"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

        return cls(
            database_url=database_url,
            jwt_secret=os.getenv("JWT_SECRET", ""),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
            gateway_payment_methods=_split(os.getenv("GATEWAY_PAYMENT_METHODS", "Stripe")),
            default_currency=os.getenv("DEFAULT_CURRENCY", "inr").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
