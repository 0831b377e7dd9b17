"""
Unit Tests for structured logging

Run with: pytest tests/test_logging_config.py -v
"""

import json
import logging

from logging_config import (
    AuditTextFormatter,
    JSONFormatter,
    RequestContextFilter,
    clear_request_context,
    set_request_context,
)
from reconciliation.enums import ReconciliationAuditEvent
from reconciliation.services.reconciliation_service import log_reconciliation_event


def make_record(extra=None):
    logger = logging.getLogger("recon.test")
    record = logger.makeRecord("recon.test", logging.INFO, __file__, 1, "Reconciliation event", None, None, extra=extra)
    RequestContextFilter().filter(record)
    return record


class TestFormatters:
    """Test JSON and text output."""

    def test_json_groups_audit_extras(self):
        set_request_context(request_id="req-1")
        try:
            record = make_record({"event": "reconciliation.recomputed", "run_id": "run-1", "details": {"matched": 2}})
        finally:
            clear_request_context()

        payload = json.loads(JSONFormatter(service_name="recon-core").format(record))

        assert payload["service"] == "recon-core"
        assert payload["extra"]["run_id"] == "run-1"
        assert payload["extra"]["details"] == {"matched": 2}
        assert payload["extra"]["request_id"] == "req-1"
        assert "user_id" not in payload["extra"]

    def test_text_appends_run_tag(self):
        record = make_record({"run_id": "run-7", "actor": "u1"})

        text = AuditTextFormatter().format(record)

        assert text.endswith("[run_id=run-7 actor=u1]")

    def test_plain_record_has_no_tags(self):
        assert not AuditTextFormatter().format(make_record()).endswith("]")


class TestAuditEvents:
    """Test audit event emission."""

    def test_event_carries_run_and_actor(self, caplog):
        with caplog.at_level(logging.INFO, logger="reconciliation.services.reconciliation_service"):
            log_reconciliation_event(ReconciliationAuditEvent.MANUAL_MATCH, "run-9", {"system_line_id": "s1"}, "u2")

        record = caplog.records[-1]
        assert record.event == "reconciliation.manual_match"
        assert record.run_id == "run-9"
        assert record.actor == "u2"
