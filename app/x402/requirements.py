# app/x402/requirements.py
"""
Requirement builder for x402 402 responses.

One PaymentRequirements is produced per (network, token) the route offers.
Two wire layouts are rendered from the same model:

v1 (legacy, inline):
    {"x402Version": 1, "error": ..., "accepts": [{
        "scheme", "network", "maxAmountRequired", "asset", "payTo",
        "resource": "<url>", "description", "maxTimeoutSeconds",
        "extra": {"nonce", "expiresAt", "tokenType", "acceptedTokens", "facilitator", ...}
    }]}

v2 (structured):
    {"x402Version": 2, "error": ..., "resource": {"url", "description", "mimeType"},
     "accepts": [{"scheme", "network", "asset", "amount", "payTo",
                  "maxTimeoutSeconds", "extra": {...}}]}
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from starlette.responses import JSONResponse

from app.x402.registry import get_asset_identifier, get_token_extra
from app.x402.routes import NetworkConfig, RouteConfig
from app.x402.types import (
    X402_VERSION,
    X402_VERSION_LEGACY,
    PaymentRequired,
    PaymentRequirements,
    ResourceInfo,
)

logger = logging.getLogger(__name__)


def build_requirement(
    network: NetworkConfig,
    route: RouteConfig,
    token_type: str,
    max_timeout_seconds: int,
    protocol_version: int = X402_VERSION,
    now: Optional[datetime] = None,
) -> PaymentRequirements:
    """
    Build the requirement for paying a route with one token on one network.

    The gateway also uses this to rebuild the authoritative requirement
    sent to the facilitator, so the client never sets its own price.
    """
    accepted_tokens = [t for t in route.accept_tokens if t in network.tokens]

    extra: Dict[str, Any] = {
        "facilitator": network.facilitator_url,
        "tokenType": token_type,
        "acceptedTokens": accepted_tokens,
    }
    extra.update(get_token_extra(network.family, network.network_name, token_type))

    if protocol_version == X402_VERSION_LEGACY:
        now = now or datetime.now(timezone.utc)
        extra["nonce"] = str(uuid.uuid4())
        extra["expiresAt"] = (now + timedelta(seconds=max_timeout_seconds)).isoformat()

    return PaymentRequirements(
        scheme="exact",
        network=network.network_id,
        asset=get_asset_identifier(network.family, network.network_name, token_type),
        amount=route.price_for(token_type),
        payTo=network.pay_to,
        maxTimeoutSeconds=max_timeout_seconds,
        extra=extra,
    )


def build_payment_required(
    route: RouteConfig,
    networks: Mapping[str, NetworkConfig],
    resource: ResourceInfo,
    protocol_version: int = X402_VERSION,
    max_timeout_seconds: int = 300,
    now: Optional[datetime] = None,
) -> PaymentRequired:
    """
    Build the PaymentRequired for a route.

    Args:
        route: The protected route
        networks: Configured networks by family
        resource: The resource being requested
        protocol_version: 1 for the legacy layout, 2 for structured
        max_timeout_seconds: Payment validity window
        now: Clock override for nonce expiry

    Returns:
        PaymentRequired with one entry per (network, token) combination
    """
    accepts: List[PaymentRequirements] = []
    for family in route.networks:
        network = networks[family]
        for token_type in network.tokens:
            if token_type not in route.accept_tokens:
                continue
            accepts.append(
                build_requirement(
                    network,
                    route,
                    token_type,
                    max_timeout_seconds,
                    protocol_version=protocol_version,
                    now=now,
                )
            )

    return PaymentRequired(
        x402Version=protocol_version,
        resource=resource,
        accepts=accepts,
    )


def render_requirement(
    requirement: PaymentRequirements,
    resource: ResourceInfo,
    protocol_version: int,
) -> Dict[str, Any]:
    """Render one requirement in the wire layout of a protocol version."""
    if protocol_version != X402_VERSION_LEGACY:
        return requirement.model_dump(mode="json")

    return {
        "scheme": requirement.scheme,
        "network": requirement.network,
        "maxAmountRequired": requirement.amount,
        "asset": requirement.asset,
        "payTo": requirement.payTo,
        "resource": resource.url,
        "description": resource.description,
        "mimeType": resource.mimeType,
        "maxTimeoutSeconds": requirement.maxTimeoutSeconds,
        "extra": dict(requirement.extra),
    }


def render_payment_required(payment_required: PaymentRequired) -> Dict[str, Any]:
    """Render a PaymentRequired as the JSON body of a 402 response."""
    version = payment_required.x402Version
    body: Dict[str, Any] = {
        "x402Version": version,
        "error": payment_required.error,
    }
    if version != X402_VERSION_LEGACY:
        body["resource"] = payment_required.resource.model_dump(mode="json")
    body["accepts"] = [
        render_requirement(r, payment_required.resource, version)
        for r in payment_required.accepts
    ]
    return body


def create_402_response(payment_required: PaymentRequired) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_required: The payment options to advertise

    Returns:
        JSONResponse with 402 status and payment details
    """
    return JSONResponse(
        status_code=402,
        content=render_payment_required(payment_required),
    )
