# app/x402/facilitator.py
"""
HTTP client for x402 facilitators.

The facilitator verifies and broadcasts the signed proof; the gateway only
forwards it together with the requirement it expects to be paid.

Endpoints:
- POST {base}/settle          v2 (and EVM v1) body:
      {"x402Version", "paymentPayload", "paymentRequirements"}
      answer: {"success", "transaction", "payer", "network", "errorReason"}
- POST {base}/api/v1/settle   legacy Stacks body:
      {"signed_transaction", "expected_recipient", "min_amount", "network", "token_type"}
      answer: {"isValid", "txId", "sender", "validationError"}

Both answer shapes are normalized into one SettlementResult.

Failure classes:
- FacilitatorUnavailable: connection error, timeout, non-2xx, malformed body
- PaymentInvalid: well-formed answer with success=false
"""
import logging
from typing import Any, Callable, Dict

import requests
from pydantic import ValidationError
from requests.exceptions import RequestException
from starlette.concurrency import run_in_threadpool

from app.x402.errors import FacilitatorUnavailable, PaymentInvalid
from app.x402.types import (
    X402_VERSION,
    X402_VERSION_LEGACY,
    PaymentPayload,
    PaymentRequirements,
    SettlementResult,
)

logger = logging.getLogger(__name__)

SETTLE_PATH = "/settle"
STACKS_LEGACY_SETTLE_PATH = "/api/v1/settle"

# Shapes of facilitator answers
SHAPE_STANDARD = "standard"
SHAPE_STACKS_V1 = "stacks-v1"


def _normalize_standard(data: Dict[str, Any]) -> SettlementResult:
    success = data.get("success")
    if not isinstance(success, bool):
        raise FacilitatorUnavailable(
            "Facilitator response is missing 'success'",
            details="Malformed facilitator response",
        )
    return SettlementResult(
        success=success,
        transaction=data.get("transaction") or None,
        payer=data.get("payer") or None,
        network=data.get("network") or None,
        errorReason=data.get("errorReason") or None,
    )


def _normalize_stacks_v1(data: Dict[str, Any]) -> SettlementResult:
    is_valid = data.get("isValid")
    if not isinstance(is_valid, bool):
        raise FacilitatorUnavailable(
            "Facilitator response is missing 'isValid'",
            details="Malformed facilitator response",
        )
    return SettlementResult(
        success=is_valid,
        transaction=data.get("txId") or None,
        payer=data.get("sender") or None,
        network=data.get("network") or None,
        errorReason=data.get("validationError") or None,
    )


_NORMALIZERS: Dict[str, Callable[[Dict[str, Any]], SettlementResult]] = {
    SHAPE_STANDARD: _normalize_standard,
    SHAPE_STACKS_V1: _normalize_stacks_v1,
}


def normalize_settlement(data: Any, shape: str = SHAPE_STANDARD) -> SettlementResult:
    """
    Fold a facilitator answer into a SettlementResult.

    Args:
        data: Parsed JSON body
        shape: SHAPE_STANDARD or SHAPE_STACKS_V1

    Raises:
        FacilitatorUnavailable: If the body is not an object of the expected
            shape or a field has the wrong type
    """
    if not isinstance(data, dict):
        raise FacilitatorUnavailable(
            f"Facilitator response is not a JSON object: {type(data).__name__}",
            details="Malformed facilitator response",
        )
    try:
        return _NORMALIZERS[shape](data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        logger.error(f"x402: Facilitator response has invalid fields: {', '.join(fields)}")
        raise FacilitatorUnavailable(
            f"Facilitator response has invalid fields: {', '.join(fields)}",
            details="Malformed facilitator response",
        )


class FacilitatorClient:
    """
    Client for one facilitator service.

    requests is blocking, so calls run in Starlette's threadpool and the
    event loop only waits on them. Every call carries an explicit timeout.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"FacilitatorClient({self.base_url!r})"

    def post_json(self, path: str, body: Dict[str, Any]) -> Any:
        """
        POST a JSON body and return the parsed JSON answer.

        Raises:
            FacilitatorUnavailable: On transport errors, timeouts, non-2xx
                status or a body that is not JSON
        """
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"x402: Facilitator timed out after {self.timeout}s ({url}): {e}")
            raise FacilitatorUnavailable(
                f"Facilitator timed out after {self.timeout}s",
                details="Facilitator did not answer in time",
            )
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            logger.error(f"x402: Facilitator returned HTTP {status} ({url})")
            raise FacilitatorUnavailable(
                f"Facilitator returned HTTP {status}",
                details=f"Facilitator returned HTTP {status}",
            )
        except requests.exceptions.JSONDecodeError as e:
            logger.error(f"x402: Facilitator returned a non-JSON body ({url}): {e}")
            raise FacilitatorUnavailable(
                "Facilitator returned a non-JSON body",
                details="Malformed facilitator response",
            )
        except RequestException as e:
            logger.error(f"x402: Error calling facilitator ({url}): {e}")
            raise FacilitatorUnavailable(
                "Facilitator request failed",
                details=f"Could not reach facilitator: {type(e).__name__}",
            )
        except ValueError as e:
            logger.error(f"x402: Facilitator returned a non-JSON body ({url}): {e}")
            raise FacilitatorUnavailable(
                "Facilitator returned a non-JSON body",
                details="Malformed facilitator response",
            )

    def _checked(self, result: SettlementResult) -> SettlementResult:
        if not result.success:
            reason = result.errorReason or "Unknown reason"
            logger.warning(f"x402: Facilitator rejected payment: {reason}")
            raise PaymentInvalid(
                f"Payment rejected by facilitator: {reason}",
                details=reason,
                settlement=result,
            )
        return result

    def settle_sync(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettlementResult:
        """Blocking v2 settlement."""
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payload.model_dump(mode="json", exclude_none=True),
            "paymentRequirements": requirements.model_dump(mode="json"),
        }
        data = self.post_json(SETTLE_PATH, body)
        return self._checked(normalize_settlement(data, SHAPE_STANDARD))

    def settle_v1_sync(
        self,
        payment: Dict[str, Any],
        requirements: Dict[str, Any],
    ) -> SettlementResult:
        """Blocking v1 settlement (EVM legacy payloads)."""
        body = {
            "x402Version": X402_VERSION_LEGACY,
            "paymentPayload": payment,
            "paymentRequirements": requirements,
        }
        data = self.post_json(SETTLE_PATH, body)
        return self._checked(normalize_settlement(data, SHAPE_STANDARD))

    def settle_stacks_legacy_sync(
        self,
        signed_transaction: str,
        requirements: PaymentRequirements,
        token_type: str,
        network_name: str,
    ) -> SettlementResult:
        """Blocking legacy Stacks settlement of a raw signed transaction."""
        body = {
            "signed_transaction": signed_transaction,
            "expected_recipient": requirements.payTo,
            "min_amount": requirements.amount,
            "network": network_name,
            "token_type": token_type,
        }
        data = self.post_json(STACKS_LEGACY_SETTLE_PATH, body)
        result = normalize_settlement(data, SHAPE_STACKS_V1)
        if result.network is None:
            result = result.model_copy(update={"network": requirements.network})
        return self._checked(result)

    async def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettlementResult:
        """
        Settle a structured payment.

        Args:
            payload: Decoded client payload
            requirements: The requirement the gateway expects to be paid

        Returns:
            Successful SettlementResult

        Raises:
            PaymentInvalid: If the facilitator rejects the proof
            FacilitatorUnavailable: On transport or service failure
        """
        return await run_in_threadpool(self.settle_sync, payload, requirements)

    async def settle_v1(
        self,
        payment: Dict[str, Any],
        requirements: Dict[str, Any],
    ) -> SettlementResult:
        return await run_in_threadpool(self.settle_v1_sync, payment, requirements)

    async def settle_stacks_legacy(
        self,
        signed_transaction: str,
        requirements: PaymentRequirements,
        token_type: str,
        network_name: str,
    ) -> SettlementResult:
        return await run_in_threadpool(
            self.settle_stacks_legacy_sync,
            signed_transaction,
            requirements,
            token_type,
            network_name,
        )

