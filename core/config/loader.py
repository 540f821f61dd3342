"""
Config loader

Loads secrets.yaml and builds the payment processor / rate source configs
"""

from dataclasses import dataclass
from pathlib import Path

import yaml

from core.constants import Paths, PaymentEndpoints, RateDefaults, RateSourceEndpoints
from core.types import RunMode


@dataclass(frozen=True)
class Secrets:
    """Secret settings (loaded from secrets.yaml)

    Immutable so settings cannot change at runtime
    """

    mode: RunMode
    stripe_secret_key: str
    exchange_rate_api_key: str
    stripe_account: str | None = None
    rate_cache_ttl_sec: int = RateDefaults.CACHE_TTL_SEC
    rate_max_stale_sec: int = RateDefaults.MAX_STALE_SEC


@dataclass(frozen=True)
class PaymentConfig:
    """Payment processor connection settings"""

    base_url: str
    secret_key: str
    connected_account: str | None = None


@dataclass(frozen=True)
class RateSourceConfig:
    """Exchange rate source settings"""

    base_url: str
    api_key: str
    cache_ttl_sec: int
    max_stale_sec: int


class SecretsLoadError(Exception):
    """Raised when secrets.yaml cannot be loaded"""

    pass


def load_secrets(path: Path | None = None) -> Secrets:
    """Load secrets.yaml

    Args:
        path: secrets.yaml path (None uses the default path)

    Returns:
        Secrets instance

    Raises:
        SecretsLoadError: file missing or malformed
        ValueError: invalid mode
    """
    if path is None:
        path = Paths.SECRETS_FILE

    if not path.exists():
        raise SecretsLoadError(f"secrets.yaml not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SecretsLoadError(f"Failed to parse secrets.yaml: {e}") from e

    if data is None:
        raise SecretsLoadError("secrets.yaml is empty")

    mode_str = data.get("mode")
    if mode_str is None:
        raise SecretsLoadError("secrets.yaml has no 'mode' field")

    try:
        mode = RunMode(mode_str)
    except ValueError as e:
        valid_modes = [m.value for m in RunMode]
        raise ValueError(
            f"Invalid mode: '{mode_str}'. "
            f"Valid values: {valid_modes}"
        ) from e

    # Payment processor keys for the active mode
    mode_config = data.get(mode.value)
    if mode_config is None:
        raise SecretsLoadError(
            f"secrets.yaml has no '{mode.value}' section"
        )

    stripe_secret_key = mode_config.get("stripe_secret_key")
    if not stripe_secret_key:
        raise SecretsLoadError(
            f"'stripe_secret_key' missing in the {mode.value} section of secrets.yaml"
        )

    rate_config = data.get("exchange_rate", {}) or {}
    exchange_rate_api_key = rate_config.get("api_key", "")
    if not exchange_rate_api_key:
        raise SecretsLoadError(
            "'api_key' missing in the exchange_rate section of secrets.yaml"
        )

    return Secrets(
        mode=mode,
        stripe_secret_key=stripe_secret_key,
        exchange_rate_api_key=exchange_rate_api_key,
        stripe_account=mode_config.get("stripe_account") or None,
        rate_cache_ttl_sec=int(rate_config.get("cache_ttl_sec", RateDefaults.CACHE_TTL_SEC)),
        rate_max_stale_sec=int(rate_config.get("max_stale_sec", RateDefaults.MAX_STALE_SEC)),
    )


def get_payment_config(secrets: Secrets) -> PaymentConfig:
    """Payment processor settings for the active mode

    Sandbox and production share the endpoint; the key decides the mode.
    """
    return PaymentConfig(
        base_url=PaymentEndpoints.BASE_URL,
        secret_key=secrets.stripe_secret_key,
        connected_account=secrets.stripe_account,
    )


def get_rate_source_config(secrets: Secrets) -> RateSourceConfig:
    """Exchange rate source settings"""
    return RateSourceConfig(
        base_url=RateSourceEndpoints.BASE_URL,
        api_key=secrets.exchange_rate_api_key,
        cache_ttl_sec=secrets.rate_cache_ttl_sec,
        max_stale_sec=secrets.rate_max_stale_sec,
    )


def get_db_path(secrets: Secrets) -> Path:
    """DB path for the active mode"""
    if secrets.mode == RunMode.PRODUCTION:
        return Paths.PROD_DB
    else:
        return Paths.SANDBOX_DB


class Settings:
    """Application settings (singleton)

    Loads secrets.yaml and exposes the derived settings
    """

    _instance: "Settings | None" = None
    _secrets: Secrets | None = None

    def __new__(cls, secrets_path: Path | None = None) -> "Settings":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, secrets_path: Path | None = None) -> None:
        if self._secrets is None:
            self._secrets = load_secrets(secrets_path)

    @property
    def mode(self) -> RunMode:
        """Current run mode"""
        assert self._secrets is not None
        return self._secrets.mode

    @property
    def payment_config(self) -> PaymentConfig:
        """Payment processor settings"""
        assert self._secrets is not None
        return get_payment_config(self._secrets)

    @property
    def rate_source_config(self) -> RateSourceConfig:
        """Exchange rate source settings"""
        assert self._secrets is not None
        return get_rate_source_config(self._secrets)

    @property
    def db_path(self) -> Path:
        """DB path for the current mode"""
        assert self._secrets is not None
        return get_db_path(self._secrets)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for tests)"""
        cls._instance = None
        cls._secrets = None


def get_settings(secrets_path: Path | None = None) -> Settings:
    """Return the Settings instance

    Args:
        secrets_path: secrets.yaml path (None uses the default path)

    Returns:
        Settings singleton
    """
    return Settings(secrets_path)
