# app/x402/gateway.py
"""
x402 payment gateway.

Framework-independent decision logic used by the middleware. For one request
to a priced route it walks:

    UNAUTHENTICATED -> REQUIREMENTS_ISSUED                       (no proof: 402)
    UNAUTHENTICATED -> PROOF_RECEIVED -> DECODED | DECODE_FAILED
                    -> ROUTED | UNSUPPORTED_NETWORK
                    -> SETTLEMENT_PENDING -> SETTLEMENT_SUCCEEDED | SETTLEMENT_FAILED

and returns a GatewayDecision: either a response to send (402/400/502) or a
PaymentContext plus evidence headers for the protected handler.

Token types are validated before settlement, so a rejected token never costs
a facilitator call.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from starlette.responses import JSONResponse

from app.x402 import audit
from app.x402.codec import (
    PAYMENT_SIGNATURE_HEADER,
    X_PAYMENT_HEADER,
    X_PAYMENT_TOKEN_TYPE_HEADER,
    decode_legacy_payment,
    decode_payment_payload,
    proof_digest,
    redact_proof,
)
from app.x402.context import (
    PaymentContext,
    build_evidence_headers,
    build_payment_context,
)
from app.x402.dedup import SettlementCache
from app.x402.errors import (
    DecodeError,
    UnsupportedNetwork,
    X402Error,
)
from app.x402.registry import validate_token_type
from app.x402.requirements import (
    build_payment_required,
    build_requirement,
    render_payment_required,
)
from app.x402.router import NetworkRouter, SettlementCapability, build_router
from app.x402.routes import (
    DEFAULT_ROUTES,
    GatewayConfig,
    RouteConfig,
    build_gateway_config,
)
from app.x402.types import (
    X402_VERSION,
    PaymentRequired,
    PaymentRequirements,
    ResourceInfo,
    SettlementResult,
)

logger = logging.getLogger(__name__)


class PaymentState(Enum):
    """Per-request payment states."""
    UNAUTHENTICATED = "unauthenticated"
    REQUIREMENTS_ISSUED = "requirements_issued"
    PROOF_RECEIVED = "proof_received"
    DECODED = "decoded"
    DECODE_FAILED = "decode_failed"
    ROUTED = "routed"
    UNSUPPORTED_NETWORK = "unsupported_network"
    SETTLEMENT_PENDING = "settlement_pending"
    SETTLEMENT_SUCCEEDED = "settlement_succeeded"
    SETTLEMENT_FAILED = "settlement_failed"


TERMINAL_STATES = frozenset({
    PaymentState.REQUIREMENTS_ISSUED,
    PaymentState.DECODE_FAILED,
    PaymentState.UNSUPPORTED_NETWORK,
    PaymentState.SETTLEMENT_SUCCEEDED,
    PaymentState.SETTLEMENT_FAILED,
})


@dataclass(frozen=True)
class GatewayDecision:
    """Outcome of processing one request."""
    state: PaymentState
    status_code: int = 200
    body: Optional[Dict[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    context: Optional[PaymentContext] = None
    settlement: Optional[SettlementResult] = None

    @property
    def allowed(self) -> bool:
        return self.state is PaymentState.SETTLEMENT_SUCCEEDED

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.body or {},
            headers=dict(self.headers),
        )


class _Progress:
    """Tracks how far a request got, for error-state reporting."""

    def __init__(self):
        self.state = PaymentState.UNAUTHENTICATED

    def advance(self, state: PaymentState) -> None:
        logger.debug(f"x402: {self.state.value} -> {state.value}")
        self.state = state


def _failure_state(error: X402Error) -> PaymentState:
    if isinstance(error, DecodeError):
        return PaymentState.DECODE_FAILED
    if isinstance(error, UnsupportedNetwork):
        return PaymentState.UNSUPPORTED_NETWORK
    return PaymentState.SETTLEMENT_FAILED


class PaymentGateway:
    """
    Builds payment requirements and settles proofs for priced routes.

    Holds only immutable configuration, the router and the settlement
    cache, so one instance serves all concurrent requests.
    """

    def __init__(
        self,
        config: GatewayConfig,
        router: Optional[NetworkRouter] = None,
        cache: Optional[SettlementCache] = None,
    ):
        self.config = config
        self.router = router or build_router(config)
        self.cache = cache or SettlementCache(ttl_seconds=config.settlement_cache_ttl)

    @classmethod
    def from_settings(cls, settings, routes: Iterable[RouteConfig] = DEFAULT_ROUTES) -> "PaymentGateway":
        """
        Create the gateway from application settings.

        Raises:
            MisconfiguredRoute: If a route's network lacks a payee address or
                facilitator URL
        """
        return cls(build_gateway_config(settings, routes))

    def match_route(self, method: str, path: str) -> Optional[RouteConfig]:
        return self.config.match_route(method, path)

    def payment_required(self, route: RouteConfig, resource: ResourceInfo) -> PaymentRequired:
        return build_payment_required(
            route,
            self.config.networks,
            resource,
            protocol_version=self.config.protocol_version_for(route),
            max_timeout_seconds=self.config.timeout_for(route),
        )

    def _accepted_tokens(self, route: RouteConfig, capability: SettlementCapability) -> List[str]:
        return [t for t in route.accept_tokens if t in capability.network.tokens]

    def _requirement(
        self,
        route: RouteConfig,
        capability: SettlementCapability,
        token_type: str,
    ) -> PaymentRequirements:
        """
        The requirement the gateway expects, independent of client claims.

        Carries no v1 nonce or expiry; those are minted per 402 response
        and not stored.
        """
        return build_requirement(
            capability.network,
            route,
            token_type,
            self.config.timeout_for(route),
            protocol_version=X402_VERSION,
        )

    @staticmethod
    def _cache_key(route: RouteConfig, proof: str) -> str:
        # A proof settled for one route must not unlock another
        return proof_digest(f"{route.method} {route.path}\n{proof.strip()}")

    async def process(
        self,
        route: RouteConfig,
        resource: ResourceInfo,
        headers: Mapping[str, str],
        client_ip: str = "unknown",
        request_id: Optional[str] = None,
    ) -> GatewayDecision:
        """
        Decide what to do with a request to a priced route.

        Args:
            route: The matched route
            resource: Descriptor of the requested resource
            headers: Request headers (any case)
            client_ip: For logs and audit
            request_id: Audit correlation id

        Returns:
            GatewayDecision; decision.allowed tells whether to run the handler
        """
        headers = {k.lower(): v for k, v in headers.items()}
        signature = headers.get(PAYMENT_SIGNATURE_HEADER.lower())
        legacy = headers.get(X_PAYMENT_HEADER.lower())
        request_id = request_id or audit.generate_request_id()
        progress = _Progress()

        if not signature and not legacy:
            payment_required = self.payment_required(route, resource)
            body = render_payment_required(payment_required)
            progress.advance(PaymentState.REQUIREMENTS_ISSUED)
            logger.info(
                f"x402: No payment header for {route.method} {route.path}, "
                f"returning 402 with {len(payment_required.accepts)} options"
            )
            audit.log_payment_required_sent(
                client_ip=client_ip,
                resource=resource.url,
                accepts=[
                    {"network": r.network, "token_type": r.token_type, "amount": r.amount}
                    for r in payment_required.accepts
                ],
                x402_version=payment_required.x402Version,
                request_id=request_id,
            )
            return GatewayDecision(state=progress.state, status_code=402, body=body)

        progress.advance(PaymentState.PROOF_RECEIVED)
        try:
            if signature:
                return await self._process_structured(
                    route, signature, progress, client_ip, request_id
                )
            return await self._process_legacy(
                route, resource, legacy, headers.get(X_PAYMENT_TOKEN_TYPE_HEADER.lower()),
                progress, client_ip, request_id
            )
        except X402Error as e:
            return self._failure(e, progress, client_ip, request_id)

    async def _process_structured(
        self,
        route: RouteConfig,
        header_value: str,
        progress: _Progress,
        client_ip: str,
        request_id: str,
    ) -> GatewayDecision:
        payload = decode_payment_payload(header_value)
        if payload.x402Version != X402_VERSION:
            raise DecodeError(
                f"Unsupported x402 version {payload.x402Version} in Payment-Signature",
                code="INVALID_X402_VERSION",
                expected=X402_VERSION,
                received=payload.x402Version,
            )
        progress.advance(PaymentState.DECODED)

        capability = self.router.route_payload(payload, route)
        progress.advance(PaymentState.ROUTED)

        token_type = validate_token_type(
            capability.resolve_token_type(payload.accepted),
            self._accepted_tokens(route, capability),
        )
        requirement = self._requirement(route, capability, token_type)

        audit.log_payment_received(
            client_ip=client_ip,
            header_format="payment-signature",
            proof_digest=proof_digest(header_value),
            network=capability.network_id,
            token_type=token_type,
            request_id=request_id,
        )
        logger.info(
            f"x402: Settling {token_type} payment on {capability.network_id} "
            f"for {route.method} {route.path} (proof {redact_proof(header_value)})"
        )

        progress.advance(PaymentState.SETTLEMENT_PENDING)
        settlement = await self.cache.settle_once(
            self._cache_key(route, header_value),
            lambda: capability.settle(payload, requirement),
        )
        return self._success(capability, settlement, token_type, requirement, progress, client_ip, request_id)

    async def _process_legacy(
        self,
        route: RouteConfig,
        resource: ResourceInfo,
        header_value: str,
        token_type_header: Optional[str],
        progress: _Progress,
        client_ip: str,
        request_id: str,
    ) -> GatewayDecision:
        payment = decode_legacy_payment(header_value, token_type_header)
        progress.advance(PaymentState.DECODED)

        capability = self.router.route_legacy(payment, route)
        progress.advance(PaymentState.ROUTED)

        token_type = validate_token_type(
            payment.token_type or capability.resolve_token_type(),
            self._accepted_tokens(route, capability),
        )
        requirement = self._requirement(route, capability, token_type)

        audit.log_payment_received(
            client_ip=client_ip,
            header_format="x-payment",
            proof_digest=payment.digest,
            network=capability.network_id,
            token_type=token_type,
            request_id=request_id,
        )
        logger.info(
            f"x402: Settling legacy {token_type} payment on {capability.network_id} "
            f"for {route.method} {route.path} (proof {redact_proof(payment.proof)})"
        )

        progress.advance(PaymentState.SETTLEMENT_PENDING)
        settlement = await self.cache.settle_once(
            self._cache_key(route, payment.proof),
            lambda: capability.settle_legacy(payment, requirement, resource),
        )
        return self._success(capability, settlement, token_type, requirement, progress, client_ip, request_id)

    def _success(
        self,
        capability: SettlementCapability,
        settlement: SettlementResult,
        token_type: str,
        requirement: PaymentRequirements,
        progress: _Progress,
        client_ip: str,
        request_id: str,
    ) -> GatewayDecision:
        context = build_payment_context(
            capability.namespace,
            capability.network_id,
            settlement,
            token_type,
            requirement.amount,
        )
        progress.advance(PaymentState.SETTLEMENT_SUCCEEDED)
        logger.info(
            f"x402: Payment verified: {settlement.transaction} from {settlement.payer or 'unknown'}"
        )
        audit.log_payment_settled(
            client_ip=client_ip,
            payer=settlement.payer,
            transaction=settlement.transaction,
            network=context.networkId,
            token_type=token_type,
            amount=requirement.amount,
            request_id=request_id,
        )
        return GatewayDecision(
            state=progress.state,
            status_code=200,
            headers=build_evidence_headers(settlement),
            context=context,
            settlement=settlement,
        )

    def _failure(
        self,
        error: X402Error,
        progress: _Progress,
        client_ip: str,
        request_id: str,
    ) -> GatewayDecision:
        stage = progress.state.value
        progress.advance(_failure_state(error))
        logger.warning(f"x402: Payment failed at {stage} ({error.code}): {error.message}")
        audit.log_payment_failed(
            client_ip=client_ip,
            stage=stage,
            code=error.code,
            reason=error.details or error.message,
            request_id=request_id,
        )
        return GatewayDecision(
            state=progress.state,
            status_code=error.status_code,
            body=error.to_dict(),
        )
