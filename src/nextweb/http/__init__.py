"""
=============================================================================
HTTP PROTOCOL COMPONENTS
=============================================================================

The protocol layer is intentionally thin:

    request.py       extract_path() - route on the request line only
    response.py      HTTPResponse, canned responses, classify_status()
    status_codes.py  HTTPStatus enum for locally generated responses

Requests and proxied responses are otherwise treated as opaque bytes.

=============================================================================
"""

from .request import extract_path, decode_request, find_header_end
from .response import (
    HTTPResponse,
    SERVER_NAME,
    classify_status,
    error_response,
    html_ok,
)
from .status_codes import HTTPStatus

__all__ = [
    "extract_path",
    "decode_request",
    "find_header_end",
    "HTTPResponse",
    "SERVER_NAME",
    "classify_status",
    "error_response",
    "html_ok",
    "HTTPStatus",
]
