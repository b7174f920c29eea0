# app/x402/context.py
"""
Verified-payment context for protected handlers.

After a successful settlement the gateway attaches a PaymentContext to
request.state.x402. Handlers read it with get_payment_context(), usable as a
FastAPI dependency. Settlement evidence goes back to the client in the
X-PAYMENT-RESPONSE and X-PAYER-ADDRESS headers.
"""
from typing import Dict, Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field

from app.x402.codec import (
    X_PAYER_ADDRESS_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    encode_settlement_header,
)
from app.x402.types import SettlementResult

STATE_ATTRIBUTE = "x402"


class PaymentContext(BaseModel):
    """Facts about the verified payment of the current request."""
    model_config = ConfigDict(frozen=True)

    network: str = Field(..., description="Network family (stacks, eip155).")
    networkId: str = Field(..., description="CAIP-2 network id.")
    verified: bool = True
    txId: Optional[str] = None
    payerAddress: Optional[str] = None
    tokenType: Optional[str] = None
    amount: Optional[str] = None


def build_payment_context(
    family: str,
    network_id: str,
    settlement: SettlementResult,
    token_type: str,
    amount: str,
) -> PaymentContext:
    return PaymentContext(
        network=family,
        networkId=settlement.network or network_id,
        verified=settlement.success,
        txId=settlement.transaction,
        payerAddress=settlement.payer,
        tokenType=token_type,
        amount=amount,
    )


def build_evidence_headers(settlement: SettlementResult) -> Dict[str, str]:
    """Response headers proving the payment to the client."""
    headers = {X_PAYMENT_RESPONSE_HEADER: encode_settlement_header(settlement)}
    # Header values must be latin-1; addresses are ASCII
    if settlement.payer and settlement.payer.isascii() and settlement.payer.isprintable():
        headers[X_PAYER_ADDRESS_HEADER] = settlement.payer
    return headers


def attach_payment_context(request: Request, context: PaymentContext) -> None:
    """
    Attach the context to the request.

    Raises:
        RuntimeError: If the request already carries one
    """
    if getattr(request.state, STATE_ATTRIBUTE, None) is not None:
        raise RuntimeError("Request already has a payment context")
    setattr(request.state, STATE_ATTRIBUTE, context)


def get_payment_context(request: Request) -> Optional[PaymentContext]:
    """Payment context of the request, None for free or unpaid requests."""
    return getattr(request.state, STATE_ATTRIBUTE, None)
