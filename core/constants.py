"""
Hard-coded constants - fixed values that rarely change

Paths always use pathlib.Path (cross-platform).
"""

from decimal import Decimal
from pathlib import Path


# Project root (two levels up from this file: core/constants.py -> project root)
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent


class RateSourceEndpoints:
    """Exchange rate source endpoints

    Docs: https://www.exchangerate-api.com/docs/standard-requests
    """

    BASE_URL: str = "https://v6.exchangerate-api.com/v6"


class PaymentEndpoints:
    """Payment processor endpoints (Stripe REST API)"""

    BASE_URL: str = "https://api.stripe.com"


class Defaults:
    """Default values"""

    BASE_CURRENCY: str = "USD"

    WEB_HOST: str = "127.0.0.1"
    WEB_PORT: int = 8000

    LOG_LEVEL: str = "INFO"

    # Dashboard windows
    HISTORY_DAYS: int = 30
    TRANSACTION_LIMIT: int = 50


class RateDefaults:
    """Exchange rate cache settings"""

    # Cached rates younger than this are returned without calling the source
    CACHE_TTL_SEC: int = 60 * 60

    # Oldest cached snapshot accepted as a fallback when the source is down
    MAX_STALE_SEC: int = 24 * 60 * 60

    REQUEST_TIMEOUT_SEC: float = 10.0

    # CNY is pegged at 1.30 per 100 USD, not a market rate.
    CNY_FIXED_RATE: Decimal = Decimal("0.013")


class PaymentDefaults:
    """Payment processor client settings"""

    REQUEST_TIMEOUT_SEC: float = 30.0
    MAX_RETRIES: int = 2

    # Currencies the processor charges without minor units
    ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset({"JPY"})


# Balance amounts are fixed-point with two fraction digits
AMOUNT_QUANT: Decimal = Decimal("0.01")


# Presentation metadata (not part of any financial invariant)
CURRENCY_INFO: dict[str, dict[str, str]] = {
    "USD": {"symbol": "$", "name": "US Dollar"},
    "EUR": {"symbol": "€", "name": "Euro"},
    "CNY": {"symbol": "¥", "name": "Chinese Yuan"},
    "JPY": {"symbol": "¥", "name": "Japanese Yen"},
    "BRL": {"symbol": "R$", "name": "Brazilian Real"},
}


class Paths:
    """Project paths (pathlib, OS independent)"""

    # Directories
    CONFIG_DIR: Path = PROJECT_ROOT / "config"
    DATA_DIR: Path = PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    WEB_LOGS_DIR: Path = LOGS_DIR / "web"
    SCRIPTS_LOGS_DIR: Path = LOGS_DIR / "scripts"

    # Config files
    SECRETS_FILE: Path = CONFIG_DIR / "secrets.yaml"

    # DB files
    PROD_DB: Path = DATA_DIR / "wallet_prod.db"
    SANDBOX_DB: Path = DATA_DIR / "wallet_sandbox.db"
