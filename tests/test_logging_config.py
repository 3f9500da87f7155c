"""
Tests for structured logging.
"""

import json
import logging

from authcore.core.logging_config import CustomJsonFormatter, setup_logging


def make_record(level=logging.INFO, msg="Issued resend verification code"):
    return logging.LogRecord(
        name="authcore.core.verification",
        level=level,
        pathname=__file__,
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
        func="issue_code",
    )


class TestCustomJsonFormatter:
    """Test JSON log records"""

    def test_standard_fields(self):
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(logger)s %(module)s %(funcName)s %(message)s')

        payload = json.loads(formatter.format(make_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "authcore.core.verification"
        assert payload["function"] == "issue_code"
        assert payload["message"] == "Issued resend verification code"
        assert "line" not in payload

    def test_warnings_carry_location(self):
        formatter = CustomJsonFormatter('%(message)s')

        payload = json.loads(formatter.format(make_record(logging.WARNING, "Refresh token reuse detected")))

        assert payload["line"] == 42
        assert payload["pathname"] == __file__


def test_setup_logging_sets_level():
    root = logging.getLogger()
    previous_level, previous_handlers = root.level, root.handlers[:]
    try:
        setup_logging(log_level="WARNING", json_logs=True)

        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)


def test_secret_extras_redacted():
    formatter = CustomJsonFormatter('%(message)s')
    record = make_record()
    record.code = "482913"
    record.refresh_token = "abc.def"
    record.provider = "sms"

    payload = json.loads(formatter.format(record))

    assert payload["code"] == "[REDACTED]"
    assert payload["refresh_token"] == "[REDACTED]"
    assert payload["provider"] == "sms"
