"""Operator-facing rendering of processed records."""

from __future__ import annotations

from .models import LogRecord

_RESET = "\x1b[0m"
_DIM = "\x1b[2m"
_BOLD = "\x1b[1m"


def _status_color(status: int | None) -> str:
    if status is None or status >= 500:
        return "\x1b[31m"  # red
    if status >= 400:
        return "\x1b[33m"  # yellow
    if status >= 300:
        return "\x1b[36m"  # cyan
    return "\x1b[32m"  # green


def format_record(r: LogRecord, *, color: bool = True) -> str:
    """Render a record on one line, with optional detail lines."""
    reset = _RESET if color else ""
    dim = _DIM if color else ""
    bold = _BOLD if color else ""
    status_color = _status_color(r.status) if color else ""
    status = "-" if r.status is None else str(r.status)
    size = "-" if r.bytes_sent is None else str(r.bytes_sent)

    out = f"{dim}{r.time}{reset} {bold}{r.remote_addr}{reset}"
    if r.realip_remote_addr != r.remote_addr:
        out += f" (real: {r.realip_remote_addr})"
    out += f" {bold}{r.method}{reset} {r.url}"
    out += f" {status_color}{status}{reset}"
    out += f" {dim}{size}B{reset}"

    for label, value in (
        ("referer:   ", r.referer),
        ("user-agent:", r.user_agent),
        ("x-fwd-for: ", r.x_forwarded_for),
    ):
        if value and value != "-":
            out += f"\n  {label} {value}"
    return out
