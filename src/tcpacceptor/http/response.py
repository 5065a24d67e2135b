"""
=============================================================================
HTTP RESPONSES
=============================================================================

The acceptor does not implement HTTP. It answers every request with a
small, fixed message that happens to be a VALID HTTP/1.1 response, so any
HTTP client (curl, a browser, requests) can talk to it.

    ┌─ STATUS LINE ───────────────────────────────────────────────────────┐
    │    HTTP/1.1 200 OK\r\n                                              │
    ├─ HEADERS ───────────────────────────────────────────────────────────┤
    │    Content-Type: text/plain; charset=utf-8\r\n                      │
    │    Content-Length: 11\r\n          ← client knows where body ends  │
    │    Connection: close\r\n           ← one request per connection    │
    │    Date: Sat, 17 Oct 2026 12:00:00 GMT\r\n                          │
    │    Server: tcpacceptor/1.0\r\n                                      │
    │    \r\n                                                             │
    ├─ BODY ──────────────────────────────────────────────────────────────┤
    │    Hey Client!                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every response carries "Connection: close": the acceptor serves exactly one
request per connection and then closes it.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Union

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "tcpacceptor/1.0"


@dataclass
class HTTPResponse:
    """
    An HTTP response waiting to be serialized.

        handler returns          to_bytes()              Connection
        HTTPResponse    ─────►   serializes    ─────►    sendall()
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """
        Get the HTTP status line.

        Format: HTTP-VERSION SP STATUS-CODE SP REASON-PHRASE
        Example: "HTTP/1.1 200 OK"
        """
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a response header. Returns self for chaining."""
        self.headers[name] = value
        return self

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Set the body, encoding strings as UTF-8."""
        if isinstance(body, str):
            self.body = body.encode("utf-8")
        else:
            self.body = body
        return self

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """
        Serialize the response for socket.sendall().

        Content-Length, Date, Server and Connection are added when the
        handler did not set them.
        """
        response_headers = dict(self.headers)

        if "Content-Length" not in response_headers:
            response_headers["Content-Length"] = str(len(self.body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        # One request per connection, always.
        response_headers.setdefault("Connection", "close")

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + self.body


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Format: Day, DD Mon YYYY HH:MM:SS GMT
    Example: Sat, 17 Oct 2026 12:00:00 GMT

    HTTP dates are ALWAYS in GMT, never local time.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CANNED RESPONSES
# =============================================================================

def text_response(body: Union[str, bytes], status: HTTPStatus = HTTPStatus.OK) -> HTTPResponse:
    """Plain text response, the shape of every successful answer."""
    response = HTTPResponse(status=status)
    response.set_header("Content-Type", "text/plain; charset=utf-8")
    return response.set_body(body)


def error_response(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """
    JSON error response: {"error": "<message>"}.

    Used for every refusal the acceptor makes (400, 408, 413, 500, 503),
    so clients can tell a refusal from a dropped connection.
    """
    response = HTTPResponse(status=status)
    response.set_header("Content-Type", "application/json; charset=utf-8")
    return response.set_body(json.dumps({"error": message or status.phrase}))


def service_unavailable(message: str = "Server busy") -> HTTPResponse:
    """503 sent when admission control turns a connection away."""
    return error_response(HTTPStatus.SERVICE_UNAVAILABLE, message)
