# app/x402/errors.py
"""
Error taxonomy for the x402 payment gateway.

Every error maps to an HTTP status and a machine-readable code so the
middleware can turn it into a response without inspecting its type:

- DecodeError, UnsupportedNetwork, UnsupportedToken: 400, the request is wrong
- PaymentInvalid: 402, the facilitator rejected the proof (get a fresh one)
- FacilitatorUnavailable: 502, transport/service failure (same proof may be retried)
- MisconfiguredRoute: raised while building configuration, aborts startup
"""
from typing import Any, Dict, Optional


class X402Error(Exception):
    """Base error for the payment gateway."""

    status_code: int = 500
    code: str = "X402_ERROR"
    error: str = "Payment processing error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[str] = None,
        **extra: Any
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if code:
            self.code = code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        """Body of the error response. Never contains proof material."""
        body: Dict[str, Any] = {
            "error": self.error,
            "details": self.details or self.message,
            "code": self.code,
        }
        body.update(self.extra)
        return body


class DecodeError(X402Error):
    """Malformed payment header."""
    status_code = 400
    code = "INVALID_PAYMENT_HEADER"
    error = "Invalid payment header"


class UnsupportedNetwork(X402Error):
    """Network id is not served by this gateway or route."""
    status_code = 400
    code = "UNSUPPORTED_NETWORK"
    error = "Unsupported network"


class UnsupportedToken(X402Error):
    """Token type is not in the accepted-token set."""
    status_code = 400
    code = "UNSUPPORTED_TOKEN"
    error = "Unsupported token type"


class PaymentInvalid(X402Error):
    """Facilitator answered with success=false."""
    status_code = 402
    code = "PAYMENT_INVALID"
    error = "Payment invalid"

    def __init__(self, message: str, settlement: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.settlement = settlement


class FacilitatorUnavailable(X402Error):
    """Connection error, timeout, non-2xx or malformed facilitator answer."""
    status_code = 502
    code = "FACILITATOR_ERROR"
    error = "Payment verification failed"
    retryable = True


class MisconfiguredRoute(X402Error):
    """Payee address or facilitator URL missing for a configured network."""
    status_code = 500
    code = "MISCONFIGURED_ROUTE"
    error = "Gateway misconfigured"
