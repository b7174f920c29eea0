# app/x402/audit.py
"""
Audit logging for x402 payments.

Every payment decision is appended to a JSON-lines file for dispute
resolution and reconciliation. Audit writes never fail a request: errors are
logged and swallowed here only.

Log location: X402_AUDIT_LOG_PATH (disabled with X402_AUDIT_ENABLED=false)

Events logged:
- Request received (method, path, route)
- 402 returned (network ids, token types, amounts)
- Payment received (header format, proof digest, network, token)
- Payment settled (transaction id, payer, network)
- Payment failed (stage, error code, reason)
- Error (type, context)

Proofs are recorded by SHA-256 digest only.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    REQUEST_RECEIVED = "request_received"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build the JSON object written for one event."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_request_received(
    client_ip: str,
    method: str,
    path: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.REQUEST_RECEIVED,
        data={"method": method, "path": path},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_required_sent(
    client_ip: str,
    resource: str,
    accepts: List[Dict[str, Any]],
    x402_version: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "resource": resource,
            "x402_version": x402_version,
            "options": accepts,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(
    client_ip: str,
    header_format: str,
    proof_digest: str,
    network: Optional[str] = None,
    token_type: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={
            "header_format": header_format,
            "proof_sha256": proof_digest,
            "network": network,
            "token_type": token_type,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_settled(
    client_ip: str,
    payer: Optional[str],
    transaction: Optional[str],
    network: str,
    token_type: str,
    amount: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful settlement."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "transaction": transaction,
            "network": network,
            "token_type": token_type,
            "amount": amount,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_failed(
    client_ip: str,
    stage: str,
    code: str,
    reason: str,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment failure event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "stage": stage,
            "code": code,
            "reason": reason,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    request_id: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        request_id: Filter by request id (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if request_id and event.get("request_id") != request_id:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    # Most recent first
    return list(reversed(events))[:max_entries]
