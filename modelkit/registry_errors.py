"""Errors returned by a remote OCI registry."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

_BODY_LIMIT = 8 * 1024


@dataclass
class JsonError:
    """One entry of the "errors" list in a registry's JSON error response."""

    code: str = ""
    message: str = ""
    detail: Any = None


def _status_text(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ""


class RegistryError(Exception):
    """A registry answered a request with an unexpected status."""

    def __init__(
        self,
        method: str,
        url: str,
        status_code: int,
        errors: list[JsonError] | None = None,
        extra_message: str = "",
    ) -> None:
        super().__init__(method, url, status_code)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.errors = list(errors or [])
        self.extra_message = extra_message

    def _entry_text(self, entry: JsonError) -> str:
        if not entry.message:
            return _status_text(self.status_code)
        return f"{entry.code.lower()}: {entry.message}"

    def __str__(self) -> str:
        if not self.errors:
            message = _status_text(self.status_code)
        elif len(self.errors) == 1:
            message = self._entry_text(self.errors[0])
        else:
            texts = "; ".join(self._entry_text(entry) for entry in self.errors)
            message = f"multiple errors: {texts}"
        if self.extra_message:
            message = f"{message} (additional info: {self.extra_message})"
        return message


def _header(headers: Mapping[str, Any] | None, name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            if isinstance(value, (list, tuple)):
                return str(value[0]) if value else ""
            return str(value)
    return ""


def _parse_errors(data: bytes) -> list[JsonError]:
    payload = json.loads(data)
    if payload is None:
        return []
    if not isinstance(payload, dict):
        raise ValueError("response body is not a JSON object")
    raw = payload.get("errors")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("'errors' is not a JSON array")
    entries = []
    for item in raw:
        if item is None:
            entries.append(JsonError())
            continue
        if not isinstance(item, dict):
            raise ValueError("error entry is not a JSON object")
        code = item.get("code")
        message = item.get("message")
        for field, value in (("code", code), ("message", message)):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"'{field}' is not a string")
        entries.append(JsonError(code or "", message or "", item.get("detail")))
    return entries


def handle_remote_error(
    method: str,
    url: str,
    status_code: int,
    headers: Mapping[str, Any] | None,
    body: Any,
) -> RegistryError:
    """Build a RegistryError from a failed response.

    body may be bytes, str or a readable stream; at most 8 KiB of it is read.
    The error is returned for the caller to raise.
    """
    err = RegistryError(method, url, status_code)

    if hasattr(body, "read"):
        try:
            data = body.read(_BODY_LIMIT)
        except OSError as exc:
            err.extra_message = f"failed to read response body: {exc}"
            return err
    else:
        data = body
    if data is None:
        data = b""
    if isinstance(data, str):
        data = data.encode("utf-8")
    data = bytes(data)[:_BODY_LIMIT]
    text = data.decode("utf-8", errors="replace")

    if _header(headers, "Content-Type") == "application/json":
        try:
            err.errors = _parse_errors(data)
        except ValueError as exc:
            err.extra_message = f"failed to unmarshal response body: {exc}, body: {text}"
    elif data:
        err.extra_message = text
    return err