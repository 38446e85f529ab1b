"""General helpers: ports, health probes, flag parsing, prompts, shells, JWT claims and API errors."""

from __future__ import annotations

import base64
import binascii
import http.client
import json
import os
import socket
import sys
import urllib.error
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

CLUSTERS_PAGE_SIZE = 50
BACKPLANE_API_URL_REGEXP = r"(?mi)^https:\/\/api\.(.*)backplane\.(.*)"
CLUSTER_ID_REGEXP = r"/?backplane/cluster/([a-zA-Z0-9]+)/?"

_KNOWN_JWT_ALGORITHMS = frozenset(
    {
        "HS256", "HS384", "HS512",
        "RS256", "RS384", "RS512",
        "ES256", "ES384", "ES512",
        "PS256", "PS384", "PS512",
        "EdDSA", "none",
    }
)


def get_free_port() -> int:
    """Ask the operating system for a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]


def check_health(url: str) -> bool:
    """Return True only if a GET on the URL answers with status 200."""
    try:
        with urllib.request.urlopen(url) as response:
            return response.status == 200
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError):
        return False


def match_base_domain(long_hostname: str, base_domain: str) -> bool:
    """Return True if the hostname ends with all labels of the base domain."""
    if not base_domain:
        return True
    host_labels = long_hostname.split(".")
    base_labels = base_domain.split(".")
    if len(host_labels) < len(base_labels):
        return False
    return host_labels[len(host_labels) - len(base_labels):] == base_labels


def parse_params_flag(params: Iterable[str]) -> dict[str, str]:
    """Turn 'key=value' items into a dict; later keys win."""
    result: dict[str, str] = {}
    for item in params:
        key, *rest = item.split("=")
        if not rest:
            raise ValueError(f"error parsing params flag, {item}")
        result[key.strip()] = "".join(rest).strip()
    return result


def append_unique_non_empty(items: Iterable[str], element: str) -> list[str]:
    """Return the items with the element added, unless it is empty or already present."""
    result = list(items)
    if element and element not in result:
        result.append(element)
    return result


def _is_terminal(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError, OSError):
        return False


def check_valid_prompt() -> bool:
    """Return True when both stdin and stderr are terminals."""
    return _is_terminal(sys.stdin) and _is_terminal(sys.stderr)


def ask_question_from_prompt(question: str) -> str:
    """Ask on stderr and read one line from stdin; empty when no interactive prompt is possible."""
    if not check_valid_prompt():
        return ""
    sys.stderr.write(question)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def is_valid_shell(shell_path: str) -> bool:
    """Return True if the given path exists."""
    try:
        os.stat(shell_path)
    except (OSError, ValueError):
        return False
    return True


def _decode_segment(segment: str) -> Any:
    padded = segment + "=" * (-len(segment) % 4)
    raw = base64.b64decode(padded, altchars=b"-_", validate=True)
    return json.loads(raw)


def _parse_unverified_claims(token: str) -> dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("token contains an invalid number of segments")
    try:
        header = _decode_segment(parts[0])
        claims = _decode_segment(parts[1])
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"malformed token: {exc}") from exc
    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise ValueError("token header and claims must be JSON objects")
    algorithm = header.get("alg")
    if not isinstance(algorithm, str):
        raise ValueError("signing method (alg) is unspecified.")
    if algorithm not in _KNOWN_JWT_ALGORITHMS:
        raise ValueError("signing method (alg) is unavailable.")
    return claims


def get_string_field_from_jwt(token: str, field: str) -> str:
    """Return a string claim from a token without verifying its signature."""
    try:
        claims = _parse_unverified_claims(token)
    except ValueError as exc:
        raise ValueError("failed to parse jwt") from exc
    if field not in claims:
        raise ValueError(f"no field {field} on given token")
    claim = claims[field]
    if not isinstance(claim, str):
        raise ValueError(f"field {field} does not contain a string value")
    return claim


def get_username_from_jwt(token: str) -> str:
    """Return the 'username' claim of a token, or 'anonymous' if it cannot be read."""
    try:
        claims = _parse_unverified_claims(token)
    except ValueError:
        return "anonymous"
    if "username" not in claims:
        return "anonymous"
    username = claims["username"]
    if not isinstance(username, str):
        raise TypeError("username claim is not a string")
    return username


def get_context_nickname(namespace: str, cluster_nick: str, user_nick: str) -> str:
    """Build a kubeconfig context nickname from its parts."""
    user = user_nick.split("/", 1)[0]
    return f"{namespace}/{cluster_nick}/{user}"


@dataclass
class BackplaneAPIErrorBody:
    """Error payload returned by the backplane API."""

    message: str | None = None
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.message is not None:
            data["message"] = self.message
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        return data


def _body_text(body: bytes | str) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def parse_backplane_api_error(
    status_code: int, status: str, body: bytes | str
) -> BackplaneAPIErrorBody:
    """Decode an error response body; raise ValueError that keeps the HTTP details if it cannot."""
    text = _body_text(body)

    def failure(reason: str) -> ValueError:
        flat = text.replace("\n", " ")
        return ValueError(
            f"status:'{status}', code:'{status_code}'; "
            f"failed to unmarshal response:'{flat}'; {reason}"
        )

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise failure(str(exc)) from exc
    if data is None:
        return BackplaneAPIErrorBody()
    if not isinstance(data, dict):
        raise failure("cannot unmarshal a non-object into an error body")
    message = data.get("message")
    code = data.get("statusCode")
    if message is not None and not isinstance(message, str):
        raise failure("field message is not a string")
    if code is not None and (isinstance(code, bool) or not isinstance(code, int)):
        raise failure("field statusCode is not an integer")
    return BackplaneAPIErrorBody(message=message, status_code=code)


def formatted_api_error(status_code: int, status: str, body: bytes | str) -> str:
    """Return the user-facing message for a failed backplane response."""
    data = parse_backplane_api_error(status_code, status, body)
    if data.message is not None and data.status_code is not None:
        return (
            f"error from backplane: \n Status Code: {data.status_code}\n"
            f" Message: {data.message}"
        )
    return f"error from backplane: \n Status Code: {status_code}\n Message: {status}"