"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes nextWeb can produce on its own.

=============================================================================
WHICH CODES DO WE NEED?
=============================================================================

nextWeb generates very few responses itself. Everything else is either a
file from disk or bytes relayed from a backend:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     LOCALLY GENERATED RESPONSES                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   200 OK                     Static file served                     │
    │   400 Bad Request            Request head too large                 │
    │   404 Not Found              Static file missing / unreadable       │
    │   500 Internal Server Error  Config section missing, bad encoding   │
    │   501 Not Implemented        Unknown server type                    │
    │   502 Bad Gateway            Backend unreachable or failed          │
    │   503 Service Unavailable    Worker queue full                      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Proxied responses can carry any status the backend chooses; those are
never parsed into this enum.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    IntEnum, so members compare equal to plain integers:

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    OK = 200

    BAD_REQUEST = 400
    NOT_FOUND = 404

    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503

    @property
    def phrase(self) -> str:
        """Reason phrase used in the status line."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_error(self) -> bool:
        """Check for 4xx or 5xx."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.BAD_GATEWAY: "Bad Gateway",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
}
