# tests/test_x402_audit.py
"""
Unit tests for x402 audit logging.
"""
import json
import pytest
from unittest.mock import patch, MagicMock

from app.x402.audit import (
    AuditEventType,
    create_audit_event,
    generate_request_id,
    log_audit_event,
    log_error,
    log_payment_failed,
    log_payment_received,
    log_payment_required_sent,
    log_payment_settled,
    log_request_received,
    read_audit_log,
)


@pytest.fixture
def audit_settings(tmp_path):
    mock_settings = MagicMock()
    mock_settings.X402_AUDIT_ENABLED = True
    mock_settings.X402_AUDIT_LOG_PATH = str(tmp_path / "logs" / "audit.jsonl")
    with patch("app.x402.audit.settings", mock_settings):
        yield mock_settings


def read_lines(settings):
    with open(settings.X402_AUDIT_LOG_PATH) as f:
        return [json.loads(line) for line in f]


class TestGenerateRequestId:
    """Test request ID generation."""

    def test_correct_length(self):
        assert len(generate_request_id()) == 8

    def test_unique_ids(self):
        ids = [generate_request_id() for _ in range(100)]
        assert len(set(ids)) == 100


class TestCreateAuditEvent:
    """Test audit event creation."""

    def test_creates_event_structure(self):
        event = create_audit_event(
            AuditEventType.PAYMENT_SETTLED,
            {"transaction": "0xabc"},
            client_ip="203.0.113.50",
            wallet_address="ST2",
            request_id="abc12345",
        )
        assert event["event_type"] == "payment_settled"
        assert event["request_id"] == "abc12345"
        assert event["client_ip"] == "203.0.113.50"
        assert event["wallet_address"] == "ST2"
        assert event["data"] == {"transaction": "0xabc"}
        assert "timestamp" in event

    def test_generates_request_id(self):
        event = create_audit_event(AuditEventType.ERROR, {})
        assert len(event["request_id"]) == 8


class TestLogAuditEvent:
    """Test writing events."""

    def test_disabled(self, tmp_path):
        mock_settings = MagicMock()
        mock_settings.X402_AUDIT_ENABLED = False
        mock_settings.X402_AUDIT_LOG_PATH = str(tmp_path / "audit.jsonl")
        with patch("app.x402.audit.settings", mock_settings):
            assert log_audit_event(AuditEventType.ERROR, {}) is None
        assert not (tmp_path / "audit.jsonl").exists()

    def test_creates_directory_and_appends(self, audit_settings):
        first = log_request_received("203.0.113.50", "GET", "/weather")
        second = log_request_received("203.0.113.50", "GET", "/weather")

        lines = read_lines(audit_settings)
        assert [e["request_id"] for e in lines] == [first, second]
        assert lines[0]["data"] == {"method": "GET", "path": "/weather"}

    def test_write_failure_is_not_raised(self, audit_settings):
        with patch("builtins.open", side_effect=OSError("disk full")):
            assert log_error("1.2.3.4", "TestError", "boom") is None


class TestEventWriters:
    """Test the per-event helpers."""

    def test_payment_required_sent(self, audit_settings):
        log_payment_required_sent(
            "1.2.3.4",
            "http://testserver/weather",
            [{"network": "stacks:2147483648", "token_type": "STX", "amount": "1000"}],
            2,
            request_id="req00001",
        )
        event = read_lines(audit_settings)[0]
        assert event["event_type"] == "payment_required_sent"
        assert event["data"]["options"][0]["amount"] == "1000"
        assert event["data"]["x402_version"] == 2

    def test_payment_received_stores_digest_only(self, audit_settings):
        log_payment_received("1.2.3.4", "x-payment", "d" * 64, "stacks:2147483648", "STX")
        event = read_lines(audit_settings)[0]
        assert event["data"]["proof_sha256"] == "d" * 64
        assert event["data"]["header_format"] == "x-payment"

    def test_payment_settled(self, audit_settings):
        log_payment_settled("1.2.3.4", "ST2", "0xabc", "stacks:2147483648", "sBTC", "100")
        event = read_lines(audit_settings)[0]
        assert event["wallet_address"] == "ST2"
        assert event["data"]["token_type"] == "sBTC"
        assert event["data"]["amount"] == "100"

    def test_payment_failed(self, audit_settings):
        log_payment_failed("1.2.3.4", "decoded", "UNSUPPORTED_TOKEN", "Token type DOGE is not accepted")
        event = read_lines(audit_settings)[0]
        assert event["data"] == {
            "stage": "decoded",
            "code": "UNSUPPORTED_TOKEN",
            "reason": "Token type DOGE is not accepted",
        }


class TestReadAuditLog:
    """Test reading the audit log back."""

    def test_missing_file(self, audit_settings):
        assert read_audit_log() == []

    def test_most_recent_first(self, audit_settings):
        log_request_received("1.2.3.4", "GET", "/a")
        log_request_received("1.2.3.4", "GET", "/b")

        events = read_audit_log()

        assert [e["data"]["path"] for e in events] == ["/b", "/a"]

    def test_filters(self, audit_settings):
        log_request_received("1.2.3.4", "GET", "/weather", request_id="req00001")
        log_payment_failed("1.2.3.4", "decoded", "X", "y", request_id="req00001")
        log_request_received("1.2.3.4", "GET", "/weather", request_id="req00002")

        assert len(read_audit_log(event_type=AuditEventType.PAYMENT_FAILED)) == 1
        assert len(read_audit_log(request_id="req00001")) == 2
        assert len(read_audit_log(max_entries=1)) == 1

    def test_skips_corrupt_lines(self, audit_settings):
        log_request_received("1.2.3.4", "GET", "/weather")
        with open(audit_settings.X402_AUDIT_LOG_PATH, "a") as f:
            f.write("not json\n\n")

        assert len(read_audit_log()) == 1
