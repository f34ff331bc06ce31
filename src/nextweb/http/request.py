"""
=============================================================================
REQUEST LINE EXTRACTION
=============================================================================

nextWeb never fully parses a request. To route a connection it only needs
the path from the request line; the proxy forwards the raw bytes as they
arrived.

=============================================================================
THE REQUEST LINE
=============================================================================

    GET /docs/index.html?lang=en HTTP/1.1\r\n
       ▲                        ▲
       │                        │
    first space            second space

    path = bytes between the two spaces, whitespace trimmed
         = "/docs/index.html?lang=en"

Rules:
- No URL decoding, no query-string stripping. The path is used verbatim.
- Fewer than two spaces (truncated or garbage input) → "/".
- The buffer may be a partial read; anything after the second space is
  ignored, including NUL padding.

This is deliberately permissive. It is enough to route a request, not a
validating HTTP parser.

=============================================================================
"""

DEFAULT_PATH = "/"

HEADER_TERMINATOR = b"\r\n\r\n"


def extract_path(buffer: bytes) -> str:
    """
    Extract the request path from raw request bytes.

    Args:
        buffer: Bytes read from the client socket, possibly truncated.

    Returns:
        The trimmed path token, or "/" if it cannot be located.

    Example:
        >>> extract_path(b"GET /about HTTP/1.1\\r\\nHost: x\\r\\n\\r\\n")
        '/about'
        >>> extract_path(b"GET")
        '/'
    """
    first_space = buffer.find(b" ")
    if first_space == -1:
        return DEFAULT_PATH

    second_space = buffer.find(b" ", first_space + 1)
    if second_space == -1:
        return DEFAULT_PATH

    token = buffer[first_space + 1:second_space]
    return token.decode("utf-8", errors="replace").strip()


def decode_request(buffer: bytes) -> str:
    """Lossy UTF-8 view of a raw request, for diagnostics. Never raises."""
    return buffer.decode("utf-8", errors="replace")


def find_header_end(buffer: bytes) -> int:
    """
    Locate the end of the header block.

    Returns:
        Index just past the blank line (start of the body), or -1 if the
        header block is not complete yet.
    """
    index = buffer.find(HEADER_TERMINATOR)
    if index == -1:
        return -1
    return index + len(HEADER_TERMINATOR)
