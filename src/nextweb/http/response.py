"""
=============================================================================
HTTP RESPONSE RENDERING
=============================================================================

Builds the small set of responses nextWeb produces itself, and classifies
any response payload (ours or a backend's) by its status line.

=============================================================================
HTTP RESPONSE ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP RESPONSE STRUCTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    HTTP/1.1 200 OK\r\n                       ← Status line          │
    │    Server: nextWeb/0.1.0\r\n                 ← Headers              │
    │    Content-Type: text/html; charset=utf-8\r\n                       │
    │    Content-Length: 42\r\n                                           │
    │    Connection: close\r\n                                            │
    │    \r\n                                      ← Blank line           │
    │    <html>...</html>                          ← Body                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every response is rendered completely in memory and written with a single
sendall(). We never keep a connection open after the response, so every
locally generated response carries "Connection: close".

=============================================================================
STATUS CLASSIFICATION
=============================================================================

The access log records a numeric status per connection. Responses from a
backend are opaque bytes, so instead of parsing we match the status line
prefix against the codes this server cares about:

    b"HTTP/1.1 200 ..."   →  200
    b"HTTP/1.1 404 ..."   →  404
    b"HTTP/1.1 500 ..."   →  500
    b"HTTP/1.1 501 ..."   →  501
    b"HTTP/1.1 502 ..."   →  502
    anything else         →  0

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from .status_codes import HTTPStatus


SERVER_NAME = "nextWeb/0.1.0"

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"

# Status codes recognised by classify_status(), in match order.
CLASSIFIED_STATUSES = (200, 404, 500, 501, 502)


@dataclass
class HTTPResponse:
    """
    A locally generated HTTP response.

    Simple data container; to_bytes() renders it for the socket.

        HTTPResponse(status=HTTPStatus.OK, body=b"hi")
            │
            └── to_bytes() ──► b"HTTP/1.1 200 OK\\r\\nServer: ...\\r\\n\\r\\nhi"
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Format: HTTP-VERSION SP STATUS-CODE SP REASON-PHRASE"""
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

    def to_bytes(self, server_name: str = SERVER_NAME) -> bytes:
        """
        Serialize the response for socket.sendall().

        Server, Content-Length, Connection and Date are filled in unless
        the caller already set them. Server always comes first so that the
        rendered head reads like the classic nextWeb response.
        """
        response_headers = {"Server": self.headers.get("Server", server_name)}
        response_headers.update(self.headers)

        response_headers.setdefault("Content-Length", str(len(self.body)))
        response_headers.setdefault("Connection", "close")
        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + self.body


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def classify_status(payload: Union[bytes, str]) -> int:
    """
    Map a rendered response to the status code recorded in the access log.

    Args:
        payload: Complete response bytes (or text).

    Returns:
        One of 200, 404, 500, 501, 502, or 0 if the status line does not
        start with any of the recognised "HTTP/1.1 <code>" prefixes.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8", errors="replace")

    for code in CLASSIFIED_STATUSES:
        if payload.startswith(b"HTTP/1.1 %d" % code):
            return code
    return 0


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================
#
#     return html_ok(contents)
#     return error_response(HTTPStatus.BAD_GATEWAY)
#     return error_response(HTTPStatus.INTERNAL_SERVER_ERROR,
#                           "500 Internal Server Error: Proxy configuration is missing")
#
# =============================================================================

def html_ok(body: bytes) -> bytes:
    """Render a 200 OK carrying a page from the document root."""
    response = HTTPResponse(
        status=HTTPStatus.OK,
        headers={"Content-Type": HTML_CONTENT_TYPE},
        body=body,
    )
    return response.to_bytes()


def error_response(status: HTTPStatus, message: Optional[str] = None) -> bytes:
    """
    Render an error response with a short plain-text body.

    The default body is "<code> <phrase>", e.g. "502 Bad Gateway".
    """
    if message is None:
        message = f"{int(status)} {status.phrase}"

    response = HTTPResponse(
        status=status,
        headers={"Content-Type": TEXT_CONTENT_TYPE},
    ).set_body(message)
    return response.to_bytes()
