"""
Tests: log formatters carry the workflow context passed through ``extra``.
"""

import json
import logging

from fitout.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord(
        "fitout.services.quotation_audit_service", logging.INFO, __file__, 1,
        "Quotation approved", None, None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_line_includes_workflow_fields():
    record = _record(case_id=3, entity_type="quotation", entity_id=7,
                     action="quotation.approve", actor_id="u-proc", request_id="abc123")

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "Quotation approved"
    assert entry["level"] == "INFO"
    assert entry["case_id"] == 3
    assert entry["action"] == "quotation.approve"
    assert entry["request_id"] == "abc123"
    assert "entity_id" in entry and "duration_ms" not in entry


def test_readable_line_appends_context_pairs():
    line = ReadableFormatter().format(_record(case_id=3, action="quotation.approve"))

    assert line.endswith("Quotation approved  case_id=3 action=quotation.approve")
    assert ReadableFormatter().format(_record()).endswith("Quotation approved")
