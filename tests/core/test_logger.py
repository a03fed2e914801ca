import logging

import pytest

from dayline.core.logger import SecretRedactionFilter, get_logger, parse_size, redact_secrets


def test_api_keys_and_tokens_are_masked():
    url = "https://host/v1beta/models/m:generateContent?key=AIzaSecret&alt=json"

    assert redact_secrets(url) == "https://host/v1beta/models/m:generateContent?key=***&alt=json"
    assert redact_secrets("Authorization: Bearer abc.def") == "Authorization: Bearer ***"
    assert redact_secrets("nothing here") == "nothing here"


def test_filter_rewrites_formatted_record():
    record = logging.LogRecord(
        "dayline", logging.INFO, __file__, 1, "calling %s", ("https://x?key=secret",), None
    )

    assert SecretRedactionFilter().filter(record)
    assert record.getMessage() == "calling https://x?key=***"


@pytest.mark.parametrize(
    "value, expected",
    [("10MB", 10 * 1024 * 1024), ("512kb", 512 * 1024), ("1GB", 1024**3), (2048, 2048)],
)
def test_parse_size(value, expected):
    assert parse_size(value) == expected


def test_loggers_are_cached_by_name():
    assert get_logger("dayline.test") is get_logger("dayline.test")
