"""
=============================================================================
ACCESS LOG
=============================================================================

One structured record per connection, whatever happened to it.

    TEXT FORMAT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - [a1b2c3d4] [17/Oct/2026:12:00:00 +0000] "GET / " ok 200 │
    │ 26 172 8003.12ms                                                    │
    │ ─────────────────────────────────────────────────────────────────── │
    │ IP     conn id   timestamp   request line  outcome status in out ms │
    └─────────────────────────────────────────────────────────────────────┘

    JSON FORMAT (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"connection_id": "a1b2c3d4", "client_ip": "127.0.0.1",             │
    │  "outcome": "ok", "status_code": 200, "bytes_in": 26,               │
    │  "bytes_out": 172, "duration_ms": 8003.12, "uptime_s": 42.5, ...}   │
    └─────────────────────────────────────────────────────────────────────┘

OUTCOMES
────────
    ok          response written
    rejected    admission control: pool saturated (503)
    too_large   request over max_request_size (413)
    timeout     read deadline or handler lifetime exceeded (408 / 503)
    malformed   framing broken (400)
    peer_closed client went away before a complete request
    write_failed response could not be delivered
    error       handler raised (500)

The logger is namespaced so it can be routed on its own:
    logging.getLogger("tcpacceptor.access").addHandler(file_handler)

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional


logger = logging.getLogger("tcpacceptor.access")


@dataclass
class ConnectionLog:
    """Structured log entry for one connection."""

    connection_id: str
    client_ip: str
    client_port: int
    outcome: str
    status_code: Optional[int]
    bytes_in: int
    bytes_out: int
    duration_ms: float
    uptime_s: float
    request_line: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.strftime("%d/%b/%Y:%H:%M:%S %z")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        data["uptime_s"] = round(self.uptime_s, 3)
        return data

    def to_text(self) -> str:
        status = self.status_code if self.status_code is not None else "-"
        return (
            f'{self.client_ip} - [{self.connection_id}] [{self.timestamp}] '
            f'"{self.request_line}" {self.outcome} {status} '
            f'{self.bytes_in} {self.bytes_out} {self.duration_ms:.2f}ms'
        )


class AccessLogger:
    """Renders ConnectionLog entries as text or JSON."""

    def __init__(self, log_format: str = "text", enabled: bool = True, log_level: int = logging.INFO):
        self.log_format = log_format
        self.enabled = enabled
        self.log_level = log_level

    def log(self, entry: ConnectionLog):
        if not self.enabled:
            return
        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
