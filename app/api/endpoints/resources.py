# app/api/endpoints/resources.py
"""
Priced resources.

Prices and accepted networks live in app.x402.routes; by the time these
handlers run the middleware has settled the payment (when x402 is enabled).
"""
from typing import Optional

from fastapi import APIRouter, Depends
import logging

from app.x402.context import PaymentContext, get_payment_context
from app.api.models.resources import (
    CompletionRequest,
    CompletionResponse,
    PaymentReceipt,
    WeatherResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def to_receipt(context: Optional[PaymentContext]) -> Optional[PaymentReceipt]:
    if context is None:
        return None
    return PaymentReceipt(
        paidWith=f"{context.network} ({context.tokenType})",
        network=context.networkId,
        txId=context.txId,
        payer=context.payerAddress,
        amount=context.amount,
    )


@router.get("/weather", response_model=WeatherResponse)
async def get_weather(
    city: str = "San Francisco",
    payment: Optional[PaymentContext] = Depends(get_payment_context),
) -> WeatherResponse:
    """Weather for a city; accepts Stacks and EVM payments."""
    return WeatherResponse(city=city, payment=to_receipt(payment))


@router.get("/stacks/weather", response_model=WeatherResponse)
async def get_stacks_weather(
    city: str = "San Francisco",
    payment: Optional[PaymentContext] = Depends(get_payment_context),
) -> WeatherResponse:
    return WeatherResponse(city=city, payment=to_receipt(payment))


@router.get("/evm/weather", response_model=WeatherResponse)
async def get_evm_weather(
    city: str = "San Francisco",
    payment: Optional[PaymentContext] = Depends(get_payment_context),
) -> WeatherResponse:
    return WeatherResponse(city=city, payment=to_receipt(payment))


@router.post("/ai/complete", response_model=CompletionResponse)
async def complete(
    body: CompletionRequest,
    payment: Optional[PaymentContext] = Depends(get_payment_context),
) -> CompletionResponse:
    logger.info(f"Completion requested ({len(body.prompt)} chars)")
    return CompletionResponse(
        prompt=body.prompt,
        completion=f'Completion for: "{body.prompt}"',
        payment=to_receipt(payment),
    )
