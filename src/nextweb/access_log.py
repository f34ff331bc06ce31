"""
=============================================================================
ACCESS LOG
=============================================================================

One line per handled connection:

    [2026-10-18 14:03:51] 192.168.1.20:51544 - /index.html - 200
     ─────────┬─────────  ────────┬────────   ─────┬─────   ─┬─
          timestamp             client            path     status

Failed reads are logged too, with path "-" and status 400:

    [2026-10-18 14:03:52] 192.168.1.20:51545 - - - 400

=============================================================================
FORMATTING VS EMITTING
=============================================================================

Formatting is a pure function of the record, including its timestamp, so
it is trivially testable and needs no shared clock or mutable state.

Emitting goes through the standard logging module on the namespaced
"nextweb.access" logger. Deployments can redirect it independently of the
diagnostic logs:

    logging.getLogger("nextweb.access").addHandler(file_handler)

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime


logger = logging.getLogger("nextweb.access")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Placeholder path when the request could not be read at all.
UNKNOWN_PATH = "-"


@dataclass(frozen=True)
class AccessLogRecord:
    """Summary of one handled connection."""

    client_address: str
    path: str
    status_code: int
    timestamp: datetime = field(default_factory=datetime.now)


def format_access_line(record: AccessLogRecord) -> str:
    """Render a record as "[<timestamp>] <client> - <path> - <status>"."""
    return (
        f"[{record.timestamp.strftime(TIMESTAMP_FORMAT)}] "
        f"{record.client_address} - {record.path} - {record.status_code}"
    )


class AccessLog:
    """
    Emits access records on the "nextweb.access" logger.

    Stateless apart from the logger reference; one instance can be shared
    by every server and worker thread.
    """

    def __init__(self, log: logging.Logger = logger, level: int = logging.INFO):
        self.log = log
        self.level = level

    def record(self, client_address: str, path: str, status_code: int) -> AccessLogRecord:
        """Build, emit and return a record stamped with the current local time."""
        entry = AccessLogRecord(
            client_address=client_address,
            path=path,
            status_code=int(status_code),
        )
        self.emit(entry)
        return entry

    def emit(self, entry: AccessLogRecord) -> None:
        self.log.log(self.level, format_access_line(entry))
