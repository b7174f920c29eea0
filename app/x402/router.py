# app/x402/router.py
"""
Network routing for x402 payments.

A SettlementCapability knows how to settle proofs for one network family.
The NetworkRouter holds one capability per CAIP-2 namespace and picks it:

- structured payments: from the network id of the accepted requirement
- legacy payments (no network tag): from the route's declared legacy network,
  or the route's only network. Detection from the proof's shape is a
  compatibility shim, off unless X402_LEGACY_HEURISTICS_ENABLED is set, and
  logged every time it decides.

Adding a network means registering another capability.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from app.x402.codec import LegacyPayment, decode_legacy_json, redact_proof
from app.x402.errors import DecodeError, UnsupportedNetwork
from app.x402.facilitator import FacilitatorClient
from app.x402.registry import EVM, STACKS, default_token, parse_network_id
from app.x402.requirements import render_requirement
from app.x402.routes import GatewayConfig, NetworkConfig, RouteConfig
from app.x402.types import (
    X402_VERSION_LEGACY,
    PaymentPayload,
    PaymentRequirements,
    ResourceInfo,
    SettlementResult,
)

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]+$")


class SettlementCapability(ABC):
    """Settles payments for one network family."""

    namespace: str = ""

    def __init__(self, network: NetworkConfig, facilitator: FacilitatorClient):
        self.network = network
        self.facilitator = facilitator

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.network_id})"

    @property
    def network_id(self) -> str:
        return self.network.network_id

    def supports(self, network_id: str) -> bool:
        return network_id == self.network_id

    def resolve_token_type(self, accepted: Optional[PaymentRequirements] = None) -> str:
        """Token named by the accepted requirement, or the family default."""
        if accepted is not None and accepted.token_type:
            return accepted.token_type
        return default_token(self.namespace)

    async def settle(
        self,
        payload: PaymentPayload,
        requirement: PaymentRequirements,
    ) -> SettlementResult:
        """Settle a structured (v2) payment."""
        return await self.facilitator.settle(payload, requirement)

    @abstractmethod
    async def settle_legacy(
        self,
        payment: LegacyPayment,
        requirement: PaymentRequirements,
        resource: ResourceInfo,
    ) -> SettlementResult:
        """Settle a legacy (v1) opaque proof."""

    @classmethod
    @abstractmethod
    def looks_like_legacy_proof(cls, proof: str) -> bool:
        """Best-effort guess whether a legacy proof belongs to this family."""


class StacksSettlement(SettlementCapability):
    """Stacks: STX, sBTC and USDCx paid by a signed transaction."""

    namespace = STACKS

    async def settle_legacy(self, payment, requirement, resource):
        token_type = self.resolve_token_type(requirement)
        return await self.facilitator.settle_stacks_legacy(
            payment.proof,
            requirement,
            token_type,
            self.network.network_name,
        )

    @classmethod
    def looks_like_legacy_proof(cls, proof: str) -> bool:
        # Serialized Stacks transactions are long hex strings
        if not _HEX_RE.match(proof):
            return False
        return proof.startswith("0x") or len(proof) > 500


class EvmSettlement(SettlementCapability):
    """EVM: USDC paid by an EIP-3009 authorization."""

    namespace = EVM

    async def settle_legacy(self, payment, requirement, resource):
        # Legacy EVM proofs are base64 JSON PaymentPayloads of protocol v1
        data = decode_legacy_json(payment.proof)
        return await self.facilitator.settle_v1(
            data,
            render_requirement(requirement, resource, X402_VERSION_LEGACY),
        )

    @classmethod
    def looks_like_legacy_proof(cls, proof: str) -> bool:
        try:
            data = decode_legacy_json(proof)
        except DecodeError:
            return False
        network = data.get("network")
        return isinstance(network, str) and (
            network.startswith(f"{EVM}:") or network.startswith("base")
        )


CAPABILITY_TYPES = {
    STACKS: StacksSettlement,
    EVM: EvmSettlement,
}


class NetworkRouter:
    """Registry of settlement capabilities keyed by CAIP-2 namespace."""

    def __init__(self, allow_heuristics: bool = False):
        self._capabilities: Dict[str, SettlementCapability] = {}
        self.allow_heuristics = allow_heuristics

    def register(self, capability: SettlementCapability) -> None:
        if capability.namespace in self._capabilities:
            raise ValueError(f"A capability for {capability.namespace} is already registered")
        self._capabilities[capability.namespace] = capability
        logger.info(f"x402: Registered {capability!r}")

    @property
    def namespaces(self) -> Iterable[str]:
        return tuple(self._capabilities)

    def get(self, namespace: str) -> SettlementCapability:
        capability = self._capabilities.get(namespace)
        if capability is None:
            raise UnsupportedNetwork(f"Network family {namespace} is not supported")
        return capability

    def route(self, network_id: str) -> SettlementCapability:
        """
        Select the capability for a CAIP-2 network id.

        Raises:
            UnsupportedNetwork: If the namespace is unknown or the capability
                serves a different network of the family
        """
        namespace, _ = parse_network_id(network_id)
        capability = self._capabilities.get(namespace)
        if capability is None or not capability.supports(network_id):
            raise UnsupportedNetwork(
                f"Network {network_id} is not supported",
                requested=network_id,
            )
        return capability

    def route_payload(self, payload: PaymentPayload, route: RouteConfig) -> SettlementCapability:
        """Capability for a structured payment, restricted to the route's networks."""
        capability = self.route(payload.accepted.network)
        if capability.namespace not in route.networks:
            raise UnsupportedNetwork(
                f"Network {payload.accepted.network} is not accepted for this resource",
                requested=payload.accepted.network,
            )
        return capability

    def route_legacy(self, payment: LegacyPayment, route: RouteConfig) -> SettlementCapability:
        """
        Capability for a legacy payment, which carries no network tag.

        Order: the route's declared legacy network, the route's only network,
        then (if enabled) shape heuristics.

        Raises:
            UnsupportedNetwork: If the network cannot be determined
        """
        if route.legacy_network:
            return self.get(route.legacy_network)

        candidates = [ns for ns in route.networks if ns in self._capabilities]
        if len(candidates) == 1:
            return self._capabilities[candidates[0]]

        if not self.allow_heuristics:
            raise UnsupportedNetwork(
                "Legacy X-PAYMENT proofs need a declared network on multi-network "
                "resources; use the Payment-Signature header instead",
            )

        matches = [
            ns for ns in candidates
            if self._capabilities[ns].looks_like_legacy_proof(payment.proof)
        ]
        if len(matches) != 1:
            logger.warning(
                f"x402: Could not infer network of legacy proof {redact_proof(payment.proof)} "
                f"(matches: {matches})"
            )
            raise UnsupportedNetwork("Could not determine the network of the legacy payment")

        logger.warning(
            f"x402: Network {matches[0]} inferred from proof shape for {route.method} {route.path}; "
            "this guess is unreliable, declare legacy_network on the route"
        )
        return self._capabilities[matches[0]]


def build_router(
    config: GatewayConfig,
    facilitators: Optional[Dict[str, FacilitatorClient]] = None,
) -> NetworkRouter:
    """One capability per configured network, each with its own facilitator."""
    facilitators = facilitators or {}
    router = NetworkRouter(allow_heuristics=config.legacy_heuristics)
    for family, network in config.networks.items():
        facilitator = facilitators.get(family) or FacilitatorClient(
            network.facilitator_url,
            timeout=config.facilitator_timeout,
        )
        router.register(CAPABILITY_TYPES[family](network, facilitator))
    return router
