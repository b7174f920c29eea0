# app/x402/types.py
"""
x402 wire types.

Field names follow the protocol's JSON (camelCase) so models dump straight
into response bodies and headers. Amounts are kept as decimal strings of
minor units and never pass through floats.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.x402.errors import UnsupportedNetwork
from app.x402.registry import parse_network_id

X402_VERSION_LEGACY = 1
X402_VERSION = 2


def parse_amount(value: Any) -> str:
    """
    Normalize an amount to a positive decimal string.

    Accepts ints and digit strings. Floats and bools are rejected so no
    binary rounding can creep into a price.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError("amount must be an integer number of minor units")
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str) or not value.isdigit() or not value.isascii():
        raise ValueError(f"amount must be a positive integer string, got {value!r}")
    if int(value) <= 0:
        raise ValueError("amount must be positive")
    return str(int(value))


class ResourceInfo(BaseModel):
    """Resource being paid for."""
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="URL or path of the protected resource.")
    description: str = Field(default="", description="Human-readable description.")
    mimeType: str = Field(default="application/json", description="Content type of the resource.")


class PaymentRequirements(BaseModel):
    """One advertised way to pay for a resource."""
    model_config = ConfigDict(frozen=True)

    scheme: Literal["exact"] = "exact"
    network: str = Field(..., description="CAIP-2 network id, e.g. stacks:2147483648.")
    asset: str = Field(..., description="Asset identifier of the token.")
    amount: str = Field(..., description="Amount in minor units, as a decimal string.")
    payTo: str = Field(..., description="Payee address.")
    maxTimeoutSeconds: int = Field(default=300, gt=0)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount", mode="before")
    @classmethod
    def _validate_amount(cls, value: Any) -> str:
        return parse_amount(value)

    @field_validator("network")
    @classmethod
    def _validate_network(cls, value: str) -> str:
        try:
            parse_network_id(value)
        except UnsupportedNetwork as e:
            raise ValueError(e.message)
        return value

    @property
    def token_type(self) -> Optional[str]:
        return self.extra.get("tokenType")


class PaymentRequired(BaseModel):
    """Body of a 402 response, before layout rendering."""
    x402Version: Literal[1, 2] = X402_VERSION
    error: str = "Payment Required"
    resource: ResourceInfo
    accepts: List[PaymentRequirements] = Field(..., min_length=1)


class PaymentPayload(BaseModel):
    """Structured proof sent by the client in the Payment-Signature header."""
    model_config = ConfigDict(frozen=True)

    x402Version: int
    resource: Optional[ResourceInfo] = None
    accepted: PaymentRequirements
    payload: Dict[str, Any] = Field(..., description="Opaque signed proof.")

    @field_validator("payload")
    @classmethod
    def _validate_payload(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("payload must not be empty")
        return value


class SettlementResult(BaseModel):
    """Facilitator answer, normalized across protocol versions."""
    model_config = ConfigDict(frozen=True)

    success: bool
    transaction: Optional[str] = None
    payer: Optional[str] = None
    network: Optional[str] = None
    errorReason: Optional[str] = None
