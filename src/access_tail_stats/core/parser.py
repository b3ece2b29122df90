"""Access log line parser.

Line format is the custom nginx ``log_format``::

    log_format main '$remote_addr - $realip_remote_addr [$time_iso8601] '
                    '"$request_method $scheme://$host$request_uri $server_protocol" '
                    '$status $body_bytes_sent "$http_referer" '
                    '"$http_user_agent" "$http_x_forwarded_for"';

This is not the default nginx combined format.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from .models import LogRecord


class LineParser(Protocol):
    """Parser interface: return LogRecord if line matches, else None."""

    def parse(self, line: str) -> LogRecord | None:
        """Parse a log line into a LogRecord if recognized."""
        ...


def _decimal(raw: str) -> int | None:
    try:
        return int(raw, 10)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class AccessLineParser:
    """Parse lines of the nginx ``main`` format above."""

    _re = re.compile(
        r"^(?P<addr>\S+) - (?P<real>\S+) \[(?P<ts>[^\]]+)\] "
        r'"(?P<method>\S+) (?P<url>\S+) (?P<proto>[^"]+)" '
        r"(?P<status>\d+) (?P<bytes>\d+) "
        r'"(?P<referer>[^"]*)" "(?P<ua>[^"]*)" "(?P<xff>[^"]*)"$'
    )

    def parse(self, line: str) -> LogRecord | None:
        """Parse an access-log line into a LogRecord."""
        m = self._re.match(line.strip())
        if not m:
            return None

        return LogRecord(
            remote_addr=m.group("addr"),
            realip_remote_addr=m.group("real"),
            time=m.group("ts"),
            method=m.group("method"),
            url=m.group("url"),
            protocol=m.group("proto"),
            status=_decimal(m.group("status")),
            bytes_sent=_decimal(m.group("bytes")),
            referer=m.group("referer"),
            user_agent=m.group("ua"),
            x_forwarded_for=m.group("xff"),
        )


_DEFAULT_PARSER = AccessLineParser()


def parse_line(line: str) -> LogRecord | None:
    """Parse one line with the default parser."""
    return _DEFAULT_PARSER.parse(line)
