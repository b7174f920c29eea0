# app/api/models/resources.py
from pydantic import BaseModel, Field
from typing import Optional


class PaymentReceipt(BaseModel):
    """How the request was paid, echoed back to the client."""
    paidWith: str = Field(..., description="Network family and token, e.g. 'stacks (STX)'.")
    network: Optional[str] = Field(None, description="CAIP-2 network id the payment settled on.")
    txId: Optional[str] = Field(None, description="Settlement transaction id.")
    payer: Optional[str] = Field(None, description="Payer address reported by the facilitator.")
    amount: Optional[str] = Field(None, description="Amount paid in minor units.")


class WeatherResponse(BaseModel):
    city: str
    payment: Optional[PaymentReceipt] = None


class CompletionRequest(BaseModel):
    prompt: str = Field(..., min_length=1, example="Write a haiku about block times")


class CompletionResponse(BaseModel):
    prompt: str
    completion: str
    payment: Optional[PaymentReceipt] = None
