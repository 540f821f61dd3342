"""
FastAPI application

Router registration and app setup.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config.loader import get_settings
from core.logging import setup_logging

# logging (console + file)
setup_logging("web")

from web.routes import balance, health, payments
from web.routes.health import API_VERSION

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """App lifecycle: schema, payment processor and rate source clients"""
    from adapters.db.sqlite_adapter import SQLiteAdapter, init_schema
    from adapters.exchangerate.rest_client import ExchangeRateApiClient
    from adapters.stripe.rest_client import StripeRestClient
    from web.dependencies import set_payment_gateway, set_rate_source

    settings = get_settings()

    # create tables on startup
    async with SQLiteAdapter(settings.db_path) as db:
        await init_schema(db)

    payment_config = settings.payment_config
    stripe_client = StripeRestClient(
        base_url=payment_config.base_url,
        secret_key=payment_config.secret_key,
        connected_account=payment_config.connected_account,
    )
    set_payment_gateway(stripe_client)

    rate_config = settings.rate_source_config
    rate_client = ExchangeRateApiClient(
        base_url=rate_config.base_url,
        api_key=rate_config.api_key,
    )
    set_rate_source(
        rate_client,
        cache_ttl_sec=rate_config.cache_ttl_sec,
        max_stale_sec=rate_config.max_stale_sec,
    )

    logger.info(f"Web started: mode={settings.mode.value}, db={settings.db_path}")

    yield

    set_payment_gateway(None)
    set_rate_source(None)
    await stripe_client.close()
    await rate_client.close()
    logger.info("Web stopped")


app = FastAPI(
    title="Importal Wallet API",
    description="Multi-currency balance engine (USD/EUR/CNY/JPY)",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS (development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =========================================================================
# API routers
# =========================================================================

app.include_router(health.router)
app.include_router(balance.router)
app.include_router(payments.router)
