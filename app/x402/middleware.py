# app/x402/middleware.py
"""
FastAPI middleware for x402 payments.

This module provides HTTP middleware that:
1. Intercepts requests to priced routes
2. Returns 402 Payment Required with payment options when no proof is sent
3. Decodes the Payment-Signature (v2) or X-PAYMENT (v1) header
4. Settles the payment through the network's facilitator
5. Attaches the PaymentContext to request.state.x402 for the handler
6. Adds X-PAYMENT-RESPONSE / X-PAYER-ADDRESS evidence headers to the response

Routes not in the gateway configuration pass through untouched.
"""
import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.x402 import audit
from app.x402.context import attach_payment_context
from app.x402.gateway import PaymentGateway
from app.x402.types import ResourceInfo

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment middleware for FastAPI.

    The gateway is built once at startup (see app.main.create_app) and shared
    by all requests.
    """

    def __init__(self, app, gateway: PaymentGateway):
        super().__init__(app)
        self.gateway = gateway

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        route = self.gateway.match_route(request.method, request.url.path)
        if route is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        request_id = audit.generate_request_id()
        logger.info(f"x402: Processing priced request from {client_ip}: {request.method} {request.url.path}")
        audit.log_request_received(client_ip, request.method, request.url.path, request_id=request_id)

        resource = ResourceInfo(
            url=str(request.url),
            description=route.description,
            mimeType=route.mime_type,
        )
        decision = await self.gateway.process(
            route,
            resource,
            request.headers,
            client_ip=client_ip,
            request_id=request_id,
        )
        if not decision.allowed:
            return decision.to_response()

        attach_payment_context(request, decision.context)
        response = await call_next(request)

        # Settlement already happened; evidence goes out whatever the handler returned
        for header, value in decision.headers.items():
            response.headers[header] = value
        return response
