# app/x402/codec.py
"""
Payment header codec.

Structured format (x402 v2): the Payment-Signature header carries a
base64-encoded JSON PaymentPayload. decode_payment_payload() and
encode_payment_payload() are exact inverses.

Legacy format (x402 v1): the X-PAYMENT header is the proof itself (a signed
Stacks transaction in hex, or a base64 JSON EVM authorization). It carries
no network tag; the companion X-PAYMENT-TOKEN-TYPE header names the token.

Proofs are bearer credentials. Log them only via redact_proof().
"""
import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.x402.errors import DecodeError
from app.x402.types import PaymentPayload, SettlementResult

logger = logging.getLogger(__name__)

# Request headers
PAYMENT_SIGNATURE_HEADER = "Payment-Signature"
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_TOKEN_TYPE_HEADER = "X-PAYMENT-TOKEN-TYPE"

# Response headers
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
X_PAYER_ADDRESS_HEADER = "X-PAYER-ADDRESS"


@dataclass(frozen=True)
class LegacyPayment:
    """Opaque proof from the X-PAYMENT header."""
    proof: str
    token_type: Optional[str] = None

    @property
    def digest(self) -> str:
        return proof_digest(self.proof)

    def __repr__(self) -> str:
        return f"LegacyPayment(proof={redact_proof(self.proof)}, token_type={self.token_type!r})"


def safe_base64_encode(data: bytes) -> str:
    """Standard base64 with padding."""
    return base64.b64encode(data).decode("ascii")


def safe_base64_decode(data: str) -> bytes:
    """
    Strict base64 decode. Accepts missing padding and the URL-safe alphabet.

    Raises:
        DecodeError: If the value is not base64
    """
    value = data.strip()
    if not value:
        raise DecodeError("Empty payment header")
    value = value.replace("-", "+").replace("_", "/")
    value += "=" * (-len(value) % 4)
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise DecodeError(
            "Payment header is not valid base64",
            details="Expected base64-encoded JSON payload",
        )


def proof_digest(value: str) -> str:
    """SHA-256 hex digest identifying a proof without revealing it."""
    return hashlib.sha256(value.strip().encode("utf-8")).hexdigest()


def redact_proof(value: Optional[str]) -> str:
    """Log-safe stand-in for a proof: short prefix, length and digest."""
    if not value:
        return "<empty>"
    return f"{value[:6]}...({len(value)} chars, sha256:{proof_digest(value)[:12]})"


def decode_payment_payload(header_value: str) -> PaymentPayload:
    """
    Decode the Payment-Signature header into a PaymentPayload.

    Args:
        header_value: Base64-encoded JSON payload

    Returns:
        The validated PaymentPayload

    Raises:
        DecodeError: If base64, UTF-8 or JSON decoding fails, or the protocol
            version, accepted requirement or proof is missing or invalid
    """
    raw = safe_base64_decode(header_value)

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning(f"x402: Payment header is not JSON: {redact_proof(header_value)}")
        raise DecodeError(
            "Payment header is not valid JSON",
            details="Expected base64-encoded JSON payload",
        )

    if not isinstance(data, dict):
        raise DecodeError("Payment header must encode a JSON object")

    try:
        return PaymentPayload.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        logger.warning(f"x402: Invalid payment payload fields: {', '.join(fields)}")
        raise DecodeError(
            "Payment payload is missing or has invalid fields",
            details=f"Invalid fields: {', '.join(fields)}",
        )


def encode_payment_payload(payload: PaymentPayload) -> str:
    """Encode a PaymentPayload for the Payment-Signature header."""
    data = payload.model_dump(mode="json", exclude_none=True)
    return safe_base64_encode(json.dumps(data, separators=(",", ":")).encode("utf-8"))


def decode_legacy_payment(
    header_value: str,
    token_type_header: Optional[str] = None,
) -> LegacyPayment:
    """
    Wrap the legacy X-PAYMENT header value.

    Raises:
        DecodeError: If the header is blank
    """
    proof = (header_value or "").strip()
    if not proof:
        raise DecodeError("Empty X-PAYMENT header")
    token_type = (token_type_header or "").strip() or None
    return LegacyPayment(proof=proof, token_type=token_type)


def decode_legacy_json(proof: str) -> Dict[str, Any]:
    """
    Decode a legacy proof that is itself base64 JSON (EVM v1 payloads).

    Raises:
        DecodeError: If the proof is not base64 JSON of an object
    """
    raw = safe_base64_decode(proof)
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise DecodeError("X-PAYMENT header is not valid base64 JSON")
    if not isinstance(data, dict):
        raise DecodeError("X-PAYMENT header must encode a JSON object")
    return data


def encode_settlement_header(result: SettlementResult) -> str:
    """JSON for the X-PAYMENT-RESPONSE evidence header, non-ASCII escaped."""
    return json.dumps(result.model_dump(mode="json", exclude_none=True), separators=(",", ":"))
