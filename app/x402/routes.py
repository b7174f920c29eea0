# app/x402/routes.py
"""
Immutable gateway configuration.

Built once at startup from Settings and passed explicitly to the gateway,
router and requirement builder. Nothing here is mutated after
build_gateway_config() returns, so it is shared freely across requests.

Each protected route declares:
- its price in minor units (optionally overridden per token)
- the network families it accepts ("stacks", "eip155")
- the token types it accepts
- optionally the network its legacy X-PAYMENT proofs belong to
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from app.x402.errors import MisconfiguredRoute
from app.x402.registry import (
    EVM,
    STACKS,
    SUPPORTED_TOKENS,
    network_to_caip2,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class NetworkConfig:
    """Payee and facilitator for one network family."""
    family: str
    network_name: str
    pay_to: str
    facilitator_url: str

    @property
    def network_id(self) -> str:
        return network_to_caip2(self.family, self.network_name)

    @property
    def tokens(self) -> Tuple[str, ...]:
        return SUPPORTED_TOKENS[self.family]


@dataclass(frozen=True)
class RouteConfig:
    """A priced resource."""
    method: str
    path: str
    description: str
    price: int
    networks: Tuple[str, ...] = (STACKS, EVM)
    accept_tokens: Tuple[str, ...] = ("STX", "sBTC", "USDCx", "USDC")
    token_prices: Mapping[str, int] = field(default_factory=dict)
    mime_type: str = "application/json"
    max_timeout_seconds: Optional[int] = None
    legacy_network: Optional[str] = None
    protocol_version: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "networks", tuple(self.networks))
        object.__setattr__(self, "accept_tokens", tuple(self.accept_tokens))
        object.__setattr__(self, "token_prices", MappingProxyType(dict(self.token_prices)))

    def matches(self, method: str, path: str) -> bool:
        """Exact path match, ignoring a trailing slash."""
        return method.upper() == self.method and path.rstrip("/") == self.path.rstrip("/")

    def price_for(self, token_type: str) -> int:
        return self.token_prices.get(token_type, self.price)


@dataclass(frozen=True)
class GatewayConfig:
    """Everything the gateway needs, resolved and validated."""
    networks: Mapping[str, NetworkConfig]
    routes: Tuple[RouteConfig, ...]
    protocol_version: int = 2
    max_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    facilitator_timeout: float = 30.0
    settlement_cache_ttl: int = 300
    legacy_heuristics: bool = False

    def __post_init__(self):
        object.__setattr__(self, "networks", MappingProxyType(dict(self.networks)))
        object.__setattr__(self, "routes", tuple(self.routes))

    def match_route(self, method: str, path: str) -> Optional[RouteConfig]:
        for route in self.routes:
            if route.matches(method, path):
                return route
        return None

    def protocol_version_for(self, route: RouteConfig) -> int:
        return route.protocol_version or self.protocol_version

    def timeout_for(self, route: RouteConfig) -> int:
        return route.max_timeout_seconds or self.max_timeout_seconds


# Demo routing table. Amounts are minor units: µSTX, sats for sBTC,
# 6-decimal units for USDC/USDCx.
DEFAULT_ROUTES: Tuple[RouteConfig, ...] = (
    RouteConfig(
        method="GET",
        path="/weather",
        description="Weather data for a city",
        price=1000,
        token_prices={"sBTC": 100},
    ),
    RouteConfig(
        method="POST",
        path="/ai/complete",
        description="AI text completion",
        price=10000,
        token_prices={"sBTC": 1000},
    ),
    RouteConfig(
        method="GET",
        path="/stacks/weather",
        description="Weather data for a city",
        price=1000,
        networks=(STACKS,),
        accept_tokens=("STX", "sBTC", "USDCx"),
        token_prices={"sBTC": 100},
        legacy_network=STACKS,
    ),
    RouteConfig(
        method="GET",
        path="/evm/weather",
        description="Weather data",
        price=1000,
        networks=(EVM,),
        accept_tokens=("USDC",),
        legacy_network=EVM,
    ),
)


def _validate_route(route: RouteConfig, networks: Mapping[str, NetworkConfig]) -> None:
    where = f"{route.method} {route.path}"
    if not route.networks:
        raise MisconfiguredRoute(f"{where}: no payment networks configured")
    if isinstance(route.price, bool) or not isinstance(route.price, int):
        raise MisconfiguredRoute(f"{where}: price must be an integer of minor units")
    if route.price <= 0 or any(p <= 0 for p in route.token_prices.values()):
        raise MisconfiguredRoute(f"{where}: prices must be positive integers of minor units")
    if route.legacy_network and route.legacy_network not in route.networks:
        raise MisconfiguredRoute(f"{where}: legacy network {route.legacy_network} is not offered")

    for family in route.networks:
        network = networks.get(family)
        if network is None:
            raise MisconfiguredRoute(f"{where}: network {family} is not configured")
        if not network.pay_to:
            raise MisconfiguredRoute(f"{where}: payee address for {family} is not set")
        if not network.facilitator_url:
            raise MisconfiguredRoute(f"{where}: facilitator URL for {family} is not set")

    offered = {t for family in route.networks for t in networks[family].tokens}
    if not offered.intersection(route.accept_tokens):
        raise MisconfiguredRoute(f"{where}: none of the accepted tokens is offered by its networks")


def networks_from_settings(settings) -> Dict[str, NetworkConfig]:
    """Per-family network configuration from Settings."""
    return {
        STACKS: NetworkConfig(
            family=STACKS,
            network_name=settings.STACKS_NETWORK,
            pay_to=settings.SERVER_ADDRESS_STACKS or "",
            facilitator_url=(settings.STACKS_FACILITATOR_URL or "").rstrip("/"),
        ),
        EVM: NetworkConfig(
            family=EVM,
            network_name=settings.EVM_NETWORK,
            pay_to=settings.SERVER_ADDRESS_EVM or "",
            facilitator_url=(settings.EVM_FACILITATOR_URL or "").rstrip("/"),
        ),
    }


def build_gateway_config(
    settings,
    routes: Iterable[RouteConfig] = DEFAULT_ROUTES,
) -> GatewayConfig:
    """
    Build and validate the gateway configuration.

    Args:
        settings: Application Settings
        routes: Protected routes to serve

    Returns:
        Immutable GatewayConfig

    Raises:
        MisconfiguredRoute: If any route references a network without a
            payee address or facilitator URL, or has an invalid price
    """
    networks = networks_from_settings(settings)
    routes = tuple(routes)

    for route in routes:
        _validate_route(route, networks)

    used = {family for route in routes for family in route.networks}
    config = GatewayConfig(
        networks={family: networks[family] for family in used},
        routes=routes,
        protocol_version=settings.X402_PROTOCOL_VERSION,
        max_timeout_seconds=settings.X402_MAX_TIMEOUT_SECONDS,
        facilitator_timeout=settings.X402_FACILITATOR_TIMEOUT_SECONDS,
        settlement_cache_ttl=settings.X402_SETTLEMENT_CACHE_TTL_SECONDS,
        legacy_heuristics=settings.X402_LEGACY_HEURISTICS_ENABLED,
    )
    logger.info(
        f"x402: Gateway configured for {len(routes)} routes on "
        f"{', '.join(n.network_id for n in config.networks.values())}"
    )
    return config
