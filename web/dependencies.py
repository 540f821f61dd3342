"""
Dependency injection

Dependencies managed with FastAPI's Depends. Tests replace them through
app.dependency_overrides.
"""

import asyncio
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException

from adapters.db.sqlite_adapter import SQLiteAdapter
from adapters.interfaces import IPaymentGateway, IRateSource
from core.balance import BalanceEngine, ExchangeRateProvider, KeyedLockRegistry
from core.config.loader import Settings, get_settings
from core.constants import RateDefaults
from core.storage import BalanceStore


def get_app_settings() -> Settings:
    """Application settings"""
    return get_settings()


async def get_db_write() -> AsyncGenerator[SQLiteAdapter, None]:
    """Writable DB session (balance mutations, rate cache)"""
    settings = get_settings()
    async with SQLiteAdapter(settings.db_path, readonly=False) as db:
        yield db


# =========================================================================
# Process-wide collaborators (set by the app lifespan)
# =========================================================================

_lock_registry = KeyedLockRegistry()
_rate_refresh_lock = asyncio.Lock()
_payment_gateway: IPaymentGateway | None = None
_rate_source: IRateSource | None = None
_rate_cache_ttl_sec: int = RateDefaults.CACHE_TTL_SEC
_rate_max_stale_sec: int = RateDefaults.MAX_STALE_SEC


def set_payment_gateway(gateway: IPaymentGateway | None) -> None:
    global _payment_gateway
    _payment_gateway = gateway


def set_rate_source(
    source: IRateSource | None,
    cache_ttl_sec: int = RateDefaults.CACHE_TTL_SEC,
    max_stale_sec: int = RateDefaults.MAX_STALE_SEC,
) -> None:
    global _rate_source, _rate_cache_ttl_sec, _rate_max_stale_sec
    _rate_source = source
    _rate_cache_ttl_sec = cache_ttl_sec
    _rate_max_stale_sec = max_stale_sec


def get_lock_registry() -> KeyedLockRegistry:
    """Balance locks shared by every request of this process"""
    return _lock_registry


def get_rate_refresh_lock() -> asyncio.Lock:
    """Rate refresh lock shared by every request of this process"""
    return _rate_refresh_lock


def get_payment_gateway() -> IPaymentGateway:
    """Payment processor client

    Raises:
        HTTPException: 503 when no processor is configured
    """
    if _payment_gateway is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "Unavailable", "message": "Payment processor is not configured"},
        )
    return _payment_gateway


def get_rate_source() -> IRateSource:
    """Exchange rate source

    Raises:
        HTTPException: 503 when no rate source is configured
    """
    if _rate_source is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "Unavailable", "message": "Exchange rate source is not configured"},
        )
    return _rate_source


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Authenticated user id set by the upstream auth proxy (X-User-Id)

    Raises:
        HTTPException: 401 when the header is missing
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail={"error": "Unauthorized", "message": "X-User-Id header is required"},
        )
    return x_user_id.strip()


def get_balance_store(db: SQLiteAdapter = Depends(get_db_write)) -> BalanceStore:
    return BalanceStore(db)


def get_balance_engine(
    store: BalanceStore = Depends(get_balance_store),
    gateway: IPaymentGateway = Depends(get_payment_gateway),
    rate_source: IRateSource = Depends(get_rate_source),
    locks: KeyedLockRegistry = Depends(get_lock_registry),
    refresh_lock: asyncio.Lock = Depends(get_rate_refresh_lock),
) -> BalanceEngine:
    """Engine bound to this request's DB session"""
    provider = ExchangeRateProvider(
        source=rate_source,
        store=store,
        cache_ttl_sec=_rate_cache_ttl_sec,
        max_stale_sec=_rate_max_stale_sec,
        refresh_lock=refresh_lock,
    )
    return BalanceEngine(store=store, gateway=gateway, rate_provider=provider, locks=locks)
