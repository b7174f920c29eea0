# app/main.py
from datetime import datetime, timezone
from typing import Iterable, Optional

from fastapi import FastAPI
from app.core.config import Settings, settings as default_settings
from app.api.endpoints import resources
from app.x402 import __version__
from app.x402.gateway import PaymentGateway
from app.x402.middleware import X402Middleware
from app.x402.routes import DEFAULT_ROUTES, RouteConfig
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    routes: Iterable[RouteConfig] = DEFAULT_ROUTES,
    gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    """
    Build the application.

    With X402_ENABLED the payment gateway is built here, so a route without a
    payee address or facilitator URL raises MisconfiguredRoute and the
    process does not start.
    """
    settings = settings or default_settings
    routes = tuple(routes)

    app = FastAPI(title=settings.PROJECT_NAME, version=__version__)
    app.include_router(resources.router, tags=["resources"])

    if settings.X402_ENABLED:
        gateway = gateway or PaymentGateway.from_settings(settings, routes)
        app.add_middleware(X402Middleware, gateway=gateway)
        app.state.gateway = gateway
    else:
        logger.warning("x402 payments are disabled (X402_ENABLED=false); priced routes are free")
        app.state.gateway = None

    @app.get("/", summary="Gateway info", tags=["default"])
    def read_root():
        """Networks, payees and prices served by this gateway."""
        gw = app.state.gateway
        networks = {}
        if gw is not None:
            networks = {
                family: {
                    "network": network.network_id,
                    "payTo": network.pay_to,
                    "facilitator": network.facilitator_url,
                    "tokens": list(network.tokens),
                }
                for family, network in gw.config.networks.items()
            }
        return {
            "name": settings.PROJECT_NAME,
            "version": __version__,
            "paymentsEnabled": gw is not None,
            "networks": networks,
            "endpoints": {
                f"{route.method} {route.path}": {
                    "description": route.description,
                    "price": str(route.price),
                    "tokenPrices": {k: str(v) for k, v in route.token_prices.items()},
                    "networks": list(route.networks),
                    "acceptTokens": list(route.accept_tokens),
                }
                for route in routes
            },
        }

    @app.get("/health", summary="Health Check", tags=["default"])
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()
