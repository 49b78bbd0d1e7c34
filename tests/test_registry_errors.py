import io
import json

import pytest

from modelkit.registry_errors import JsonError, RegistryError, handle_remote_error

URL = "https://registry.example.com/v2/org/repo/blobs/uploads/"
JSON_HEADERS = {"Content-Type": "application/json"}


def _json_body(errors):
    return json.dumps({"errors": errors}).encode()


def test_request_details_are_kept():
    err = handle_remote_error("POST", URL, 404, {}, b"")
    assert err.method == "POST"
    assert err.url == URL
    assert err.status_code == 404
    assert err.errors == []
    assert err.extra_message == ""


def test_no_body_uses_status_text():
    err = handle_remote_error("GET", URL, 404, {}, b"")
    assert str(err) == "Not Found"


def test_single_json_error():
    body = _json_body([{"code": "MANIFEST_UNKNOWN", "message": "manifest unknown"}])
    err = handle_remote_error("GET", URL, 404, JSON_HEADERS, body)
    assert err.errors == [JsonError("MANIFEST_UNKNOWN", "manifest unknown")]
    assert str(err) == "manifest_unknown: manifest unknown"


def test_multiple_json_errors():
    body = _json_body([{"code": "A", "message": "one"}, {"code": "B", "message": "two"}])
    err = handle_remote_error("PUT", URL, 400, JSON_HEADERS, body)
    assert str(err) == "multiple errors: a: one; b: two"


def test_json_error_without_message_uses_status_text():
    body = _json_body([{"code": "DENIED"}])
    err = handle_remote_error("GET", URL, 403, JSON_HEADERS, body)
    assert str(err) == str(RegistryError("GET", URL, 403))


def test_json_error_detail_is_kept():
    detail = {"digest": "abc"}
    body = _json_body([{"code": "X", "message": "m", "detail": detail}])
    err = handle_remote_error("GET", URL, 400, JSON_HEADERS, body)
    assert err.errors[0].detail == detail


def test_header_lookup_is_case_insensitive():
    body = _json_body([{"code": "X", "message": "m"}])
    err = handle_remote_error("GET", URL, 400, {"content-type": ["application/json"]}, body)
    assert len(err.errors) == 1
    assert err.extra_message == ""


def test_plain_text_body_becomes_extra_message():
    body = "upstream unavailable"
    err = handle_remote_error("GET", URL, 503, {"Content-Type": "text/plain"}, body.encode())
    assert err.extra_message == body
    assert str(err).endswith(f" (additional info: {body})")
    assert str(err).startswith(str(RegistryError("GET", URL, 503)))


def test_invalid_json_body():
    err = handle_remote_error("GET", URL, 500, JSON_HEADERS, b"{not json")
    assert err.errors == []
    assert err.extra_message.startswith("failed to unmarshal response body")
    assert err.extra_message.endswith("body: {not json")


def test_json_body_that_is_not_an_object():
    err = handle_remote_error("GET", URL, 500, JSON_HEADERS, b"[1, 2]")
    assert err.extra_message.startswith("failed to unmarshal response body")


def test_body_is_limited_to_8_kib():
    err = handle_remote_error("GET", URL, 500, {}, b"x" * (8 * 1024 * 2))
    assert len(err.extra_message) == 8 * 1024


def test_stream_body_is_read():
    stream = io.BytesIO(_json_body([{"code": "X", "message": "m"}]))
    err = handle_remote_error("GET", URL, 400, JSON_HEADERS, stream)
    assert err.errors == [JsonError("X", "m")]


class _FailingStream:
    def read(self, size=-1):
        raise OSError("connection reset")


def test_stream_read_failure():
    err = handle_remote_error("GET", URL, 502, JSON_HEADERS, _FailingStream())
    assert err.extra_message.startswith("failed to read response body")
    assert "connection reset" in err.extra_message


def test_registry_error_can_be_raised():
    err = handle_remote_error("GET", URL, 404, {}, b"")
    assert err.status_code == 404
    with pytest.raises(RegistryError, match="^Not Found$"):
        raise err