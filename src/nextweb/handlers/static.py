"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from a virtual server's document root.

=============================================================================
REQUEST PATH → FILE
=============================================================================

    webroot = "./www", index = "index.html"

    GET /               →  ./www/index.html
    GET /about.html     →  ./www/about.html
    GET /a.html?x=1     →  ./www/a.html?x=1     (query is NOT stripped → 404)
    GET /missing.html   →  404 Not Found

The path is used verbatim: no URL decoding, no query handling, no MIME
detection. Every file is labelled text/html.

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

    GET /../../etc/passwd

    ┌─────────────────────────────────────────────────────────────────────┐
    │  candidate = (webroot / "../../etc/passwd").resolve()               │
    │            = /etc/passwd                                            │
    │                                                                      │
    │  candidate.relative_to(webroot.resolve())  → ValueError             │
    │  → 404 Not Found, nothing is opened                                 │
    └─────────────────────────────────────────────────────────────────────┘

The answer is 404 rather than 403 so that probing outside the root looks
exactly like asking for a file that does not exist.

=============================================================================
OUTCOMES
=============================================================================

    open() fails (missing, directory, permissions)  → 404 Not Found
    read() fails or content is not UTF-8 text        → 500 Internal Server Error
    otherwise                                        → 200 OK, body = file bytes

=============================================================================
"""

import logging
from pathlib import Path

from ..config import StaticConfig
from ..http.response import HTTPStatus, error_response, html_ok


logger = logging.getLogger(__name__)


class StaticHandler:
    """
    Maps request paths onto files below a document root.

    Usage:
        handler = StaticHandler(StaticConfig(webroot="./www", index="index.html"))
        payload = handler.serve("/about.html")
    """

    def __init__(self, config: StaticConfig):
        self.config = config
        self.root_dir = Path(config.webroot).resolve()

    def resolve(self, path: str) -> Path | None:
        """
        Map a request path to a file path inside the webroot.

        Returns:
            The canonical candidate path, or None if it escapes the root.
        """
        effective = self.config.index if path == "/" else path
        if "\x00" in effective:
            return None

        # webroot + "/" + effective, then canonicalised
        try:
            candidate = Path(f"{self.config.webroot}/{effective}").resolve()
            candidate.relative_to(self.root_dir)
        except (OSError, ValueError):
            return None
        return candidate

    def serve(self, path: str) -> bytes:
        """
        Produce the full response for a request path.

        Args:
            path: Request path exactly as extracted from the request line.

        Returns:
            Rendered response bytes (200, 404 or 500).
        """
        candidate = self.resolve(path)
        if candidate is None:
            logger.warning(f"Rejected path outside webroot: {path!r}")
            return error_response(HTTPStatus.NOT_FOUND)

        try:
            f = open(candidate, "rb")
        except OSError:
            return error_response(HTTPStatus.NOT_FOUND)

        with f:
            try:
                contents = f.read()
            except OSError as e:
                # e.g. a directory on platforms where open() succeeds on it
                logger.error(f"Failed to read {candidate}: {e}")
                return error_response(HTTPStatus.INTERNAL_SERVER_ERROR)

        try:
            contents.decode("utf-8")
        except UnicodeDecodeError:
            logger.error(f"Not a UTF-8 text file: {candidate}")
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR)

        return html_ok(contents)
