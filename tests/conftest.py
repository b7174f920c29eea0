# tests/conftest.py
"""
Shared fixtures for the gateway tests.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from app.core.config import Settings
from app.x402 import audit
from app.x402.facilitator import FacilitatorClient
from app.x402.gateway import PaymentGateway
from app.x402.router import build_router
from app.x402.routes import build_gateway_config
from app.x402.types import SettlementResult

STACKS_PAY_TO = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
EVM_PAY_TO = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
STACKS_FACILITATOR = "https://stacks-facilitator.test"
EVM_FACILITATOR = "https://evm-facilitator.test"


@pytest.fixture(autouse=True)
def no_audit_log(monkeypatch):
    """Keep tests from writing to logs/x402_audit.jsonl."""
    monkeypatch.setattr(audit.settings, "X402_AUDIT_ENABLED", False)


@pytest.fixture
def make_settings():
    """Factory for Settings with both networks configured on testnets."""
    def _make(**overrides):
        values = dict(
            X402_ENABLED=True,
            X402_PROTOCOL_VERSION=2,
            STACKS_NETWORK="testnet",
            SERVER_ADDRESS_STACKS=STACKS_PAY_TO,
            STACKS_FACILITATOR_URL=STACKS_FACILITATOR,
            EVM_NETWORK="base-sepolia",
            SERVER_ADDRESS_EVM=EVM_PAY_TO,
            EVM_FACILITATOR_URL=EVM_FACILITATOR,
            X402_LEGACY_HEURISTICS_ENABLED=False,
            X402_AUDIT_ENABLED=False,
        )
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def gateway_config(make_settings):
    return build_gateway_config(make_settings())


def mock_facilitator(result=None, side_effect=None):
    """Facilitator double whose async settle methods return `result`."""
    facilitator = MagicMock(spec=FacilitatorClient)
    for name in ("settle", "settle_v1", "settle_stacks_legacy"):
        setattr(facilitator, name, AsyncMock(return_value=result, side_effect=side_effect))
    return facilitator


@pytest.fixture
def stacks_settlement():
    return SettlementResult(
        success=True,
        transaction="0x5f1e2d",
        payer="ST2CY5V39NHDPWSXMW9QDT3HC3GD6Q6XX4CFRK9AG",
        network="stacks:2147483648",
    )


@pytest.fixture
def facilitators(stacks_settlement):
    evm_result = SettlementResult(
        success=True,
        transaction="0xabc123",
        payer="0x857b06519E91e3A54538791bDbb0E22373e36b66",
        network="eip155:84532",
    )
    return {
        "stacks": mock_facilitator(stacks_settlement),
        "eip155": mock_facilitator(evm_result),
    }


@pytest.fixture
def gateway(gateway_config, facilitators):
    router = build_router(gateway_config, facilitators=facilitators)
    return PaymentGateway(gateway_config, router=router)
