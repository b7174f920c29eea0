# tests/test_x402_router.py
"""
Unit tests for network routing.
"""
import json
from base64 import b64encode

import pytest

from app.x402.codec import LegacyPayment
from app.x402.errors import UnsupportedNetwork
from app.x402.router import (
    EvmSettlement,
    NetworkRouter,
    StacksSettlement,
    build_router,
)
from app.x402.types import PaymentPayload, PaymentRequirements, ResourceInfo

STACKS_TX = "0x" + "80" * 150
EVM_PROOF = b64encode(json.dumps({
    "x402Version": 1,
    "scheme": "exact",
    "network": "base-sepolia",
    "payload": {"signature": "0xsig"},
}).encode()).decode()


def payload_for(network, token_type="STX"):
    return PaymentPayload(
        x402Version=2,
        accepted=PaymentRequirements(
            network=network,
            asset="STX",
            amount="1000",
            payTo="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
            extra={"tokenType": token_type},
        ),
        payload={"transaction": "0x00"},
    )


@pytest.fixture
def router(gateway_config, facilitators):
    return build_router(gateway_config, facilitators=facilitators)


class TestRoute:
    """Test routing by CAIP-2 id."""

    def test_stacks(self, router):
        capability = router.route("stacks:2147483648")
        assert isinstance(capability, StacksSettlement)

    def test_evm(self, router):
        assert isinstance(router.route("eip155:84532"), EvmSettlement)

    def test_other_network_of_known_family(self, router):
        # Configured for testnet only
        with pytest.raises(UnsupportedNetwork):
            router.route("stacks:1")

    def test_unknown_family(self, router):
        with pytest.raises(UnsupportedNetwork) as exc_info:
            router.route("solana:mainnet")
        assert exc_info.value.to_dict()["requested"] == "solana:mainnet"

    def test_duplicate_registration(self, router):
        with pytest.raises(ValueError):
            router.register(router.get("stacks"))

    def test_namespaces(self, router):
        assert set(router.namespaces) == {"stacks", "eip155"}

    def test_empty_router(self):
        with pytest.raises(UnsupportedNetwork):
            NetworkRouter().get("stacks")


class TestRoutePayload:
    """Test structured payment routing against a route."""

    def test_network_not_offered_by_route(self, router, gateway_config):
        route = gateway_config.match_route("GET", "/stacks/weather")
        with pytest.raises(UnsupportedNetwork):
            router.route_payload(payload_for("eip155:84532", "USDC"), route)

    def test_offered_network(self, router, gateway_config):
        route = gateway_config.match_route("GET", "/weather")
        assert router.route_payload(payload_for("stacks:2147483648"), route).namespace == "stacks"


class TestRouteLegacy:
    """Test legacy payment routing."""

    def test_declared_network(self, router, gateway_config):
        route = gateway_config.match_route("GET", "/evm/weather")
        assert router.route_legacy(LegacyPayment(STACKS_TX), route).namespace == "eip155"

    def test_multi_network_route_without_heuristics(self, router, gateway_config):
        route = gateway_config.match_route("GET", "/weather")
        with pytest.raises(UnsupportedNetwork):
            router.route_legacy(LegacyPayment(STACKS_TX), route)

    def test_heuristics_stacks(self, gateway_config, facilitators):
        router = build_router(gateway_config, facilitators=facilitators)
        router.allow_heuristics = True
        route = gateway_config.match_route("GET", "/weather")
        assert router.route_legacy(LegacyPayment(STACKS_TX), route).namespace == "stacks"

    def test_heuristics_evm(self, gateway_config, facilitators):
        router = build_router(gateway_config, facilitators=facilitators)
        router.allow_heuristics = True
        route = gateway_config.match_route("GET", "/weather")
        assert router.route_legacy(LegacyPayment(EVM_PROOF), route).namespace == "eip155"

    def test_heuristics_no_match(self, gateway_config, facilitators):
        router = build_router(gateway_config, facilitators=facilitators)
        router.allow_heuristics = True
        route = gateway_config.match_route("GET", "/weather")
        with pytest.raises(UnsupportedNetwork):
            router.route_legacy(LegacyPayment("opaque-proof"), route)


class TestProofShapes:
    """Test legacy proof shape detection."""

    def test_stacks_hex(self):
        assert StacksSettlement.looks_like_legacy_proof("0x00ab") is True
        assert StacksSettlement.looks_like_legacy_proof("ab" * 300) is True

    def test_stacks_short_hex_without_prefix(self):
        assert StacksSettlement.looks_like_legacy_proof("abcdef") is False

    def test_stacks_rejects_base64_json(self):
        assert StacksSettlement.looks_like_legacy_proof(EVM_PROOF) is False

    def test_evm_json(self):
        assert EvmSettlement.looks_like_legacy_proof(EVM_PROOF) is True

    def test_evm_rejects_hex(self):
        assert EvmSettlement.looks_like_legacy_proof(STACKS_TX) is False


@pytest.mark.asyncio
class TestCapabilitySettle:
    """Test capability delegation to facilitators."""

    async def test_stacks_legacy(self, router, facilitators, stacks_settlement):
        capability = router.get("stacks")
        requirement = PaymentRequirements(
            network="stacks:2147483648",
            asset="STX",
            amount="100",
            payTo="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
            extra={"tokenType": "sBTC"},
        )

        result = await capability.settle_legacy(LegacyPayment(STACKS_TX), requirement, None)

        assert result == stacks_settlement
        facilitators["stacks"].settle_stacks_legacy.assert_awaited_once_with(
            STACKS_TX, requirement, "sBTC", "testnet"
        )

    async def test_evm_legacy_sends_v1_requirement(self, router, facilitators):
        capability = router.get("eip155")
        requirement = PaymentRequirements(
            network="eip155:84532",
            asset="eip155:84532/erc20:0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            amount="1000",
            payTo="0x209693Bc6afc0C5328bA36FaF03C514EF312287C",
            extra={"tokenType": "USDC"},
        )
        resource = ResourceInfo(url="http://testserver/evm/weather", description="Weather data")

        await capability.settle_legacy(LegacyPayment(EVM_PROOF), requirement, resource)

        payment, v1_requirement = facilitators["eip155"].settle_v1.await_args[0]
        assert payment["network"] == "base-sepolia"
        assert v1_requirement["maxAmountRequired"] == "1000"
        assert v1_requirement["resource"] == "http://testserver/evm/weather"

    async def test_structured(self, router, facilitators):
        payload = payload_for("stacks:2147483648")
        await router.get("stacks").settle(payload, payload.accepted)
        facilitators["stacks"].settle.assert_awaited_once_with(payload, payload.accepted)
