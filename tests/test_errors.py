import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from otplus.core.errors import (
    ERROR_MESSAGES,
    ErrorType,
    FetchCancelled,
    classify_error,
    create_user_friendly_error,
)
from otplus.core.validation import ValidationError, coerce_override_number, validate_date_range
from otplus.logging_config import JSONFormatter, configure_from_env


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.clockify.me/api/v1/workspaces/ws/users")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, ErrorType.AUTH),
        (403, ErrorType.AUTH),
        (400, ErrorType.VALIDATION),
        (404, ErrorType.VALIDATION),
        (429, ErrorType.VALIDATION),
        (500, ErrorType.API),
        (503, ErrorType.API),
    ],
)
def test_classify_http_status(status, expected):
    assert classify_error(_status_error(status)) is expected


def test_classify_network_failures():
    request = httpx.Request("GET", "https://api.clockify.me")
    assert classify_error(httpx.ConnectError("boom", request=request)) is ErrorType.NETWORK
    assert classify_error(httpx.ReadTimeout("slow", request=request)) is ErrorType.NETWORK
    assert classify_error(asyncio.CancelledError()) is ErrorType.NETWORK
    assert classify_error(FetchCancelled()) is ErrorType.NETWORK
    assert classify_error(ConnectionResetError()) is ErrorType.NETWORK


def test_classify_prefers_explicit_type_and_falls_back_to_unknown():
    assert classify_error(ValidationError("bad")) is ErrorType.VALIDATION
    assert classify_error(KeyError("x")) is ErrorType.UNKNOWN
    assert classify_error(None) is ErrorType.UNKNOWN


def test_friendly_error_uses_templates():
    friendly = create_user_friendly_error(_status_error(401))
    assert friendly.type is ErrorType.AUTH
    assert friendly.title == ERROR_MESSAGES[ErrorType.AUTH]["title"]
    assert friendly.action == "reload"
    assert friendly.original_error == "HTTP 401"
    assert friendly.timestamp.tzinfo is not None


def test_friendly_error_accepts_overrides():
    friendly = create_user_friendly_error("disk full", ErrorType.API, message="Try later")
    assert friendly.type is ErrorType.API
    assert friendly.message == "Try later"
    assert friendly.original_error == "disk full"
    with pytest.raises(Exception):
        friendly.title = "changed"


@pytest.mark.parametrize("value", [float("nan"), float("inf"), "-inf", "Infinity", "NaN", -1, "abc", True])
def test_override_numbers_reject_non_finite_and_negative(value):
    with pytest.raises(ValidationError):
        coerce_override_number("capacity", value)


def test_override_numbers_accept_zero_and_positive_text():
    assert str(coerce_override_number("capacity", 0)) == "0"
    assert str(coerce_override_number("capacity", " 7.5 ")) == "7.5"


def test_date_range_rejects_inverted_window():
    with pytest.raises(ValidationError):
        validate_date_range("2024-03-05", "2024-03-01")
    window = validate_date_range("2024-03-01", "2024-03-01")
    assert window.start == window.end


def test_json_formatter_includes_error_type():
    record = logging.LogRecord("otplus.test", logging.WARNING, __file__, 10, "fetch failed: %s", ("API",), None)
    record.error_type = ErrorType.API.value
    payload = json.loads(JSONFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["message"] == "fetch failed: API"
    assert payload["error_type"] == "API_ERROR"


def test_json_formatter_omits_missing_context():
    record = logging.LogRecord("otplus.clockify", logging.WARNING, __file__, 20, "page failed", (), None)
    record.status_code = 503
    record.error_type = None
    payload = json.loads(JSONFormatter().format(record))
    assert payload["status_code"] == 503
    assert "error_type" not in payload


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def test_logging_left_alone_without_env(restore_root_logger):
    before = restore_root_logger.handlers[:]
    assert configure_from_env({}) is False
    assert restore_root_logger.handlers == before


@pytest.mark.parametrize(("flag", "json_output"), [("true", True), ("no", False)])
def test_logging_configured_from_env(restore_root_logger, flag, json_output):
    assert configure_from_env({"OTPLUS_LOG_LEVEL": "debug", "OTPLUS_LOG_JSON": flag}) is True
    [handler] = restore_root_logger.handlers
    assert isinstance(handler.formatter, JSONFormatter) is json_output
    assert restore_root_logger.level == logging.DEBUG
