"""
Connection context for chat websocket logging.

Encapsulates per-connection metadata so lifecycle logs stay consistent.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection

if TYPE_CHECKING:
    from fastapi import WebSocket


# Control characters and Unicode direction overrides stripped from log data
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting (RTL override, etc.)
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM / Zero-width no-break space
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Sanitize user-provided data before logging.

    Truncates first so escaping never splits an escape sequence, then
    strips control characters and escapes JSON-dangerous characters.

    Args:
        data: Raw user data.
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    truncated = data[:max_length] if len(data) > max_length else data
    was_truncated = len(data) > max_length

    sanitized = _CONTROL_CHAR_PATTERN.sub('', truncated)

    # Replace backslashes first to avoid double-escaping
    sanitized = sanitized.replace('\\', '\\\\')
    sanitized = sanitized.replace('"', '\\"')
    sanitized = sanitized.replace('\n', '\\n')
    sanitized = sanitized.replace('\r', '\\r')
    sanitized = sanitized.replace('\t', '\\t')

    if was_truncated:
        return sanitized + "..."
    return sanitized


@dataclass
class ChatConnectionContext:
    """
    Metadata for one chat connection.

    Usage:
        ctx = ChatConnectionContext.from_websocket(websocket, "/ws/chat")
        ctx.audit("CONNECT")
        # ... after AUTH
        ctx.user_id = user.id
        ctx.audit("AUTHENTICATED")
    """

    endpoint: str
    origin: str | None = None
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    connected_at: float = field(default_factory=time.monotonic)

    # Set once AUTH succeeds
    user_id: str | None = None
    display_name: str | None = None

    @classmethod
    def from_websocket(cls, websocket: "WebSocket", endpoint: str) -> "ChatConnectionContext":
        return cls(endpoint=endpoint, origin=websocket.headers.get("origin"))

    @property
    def identifier(self) -> str:
        """Short identifier for log lines."""
        if self.user_id:
            return f"user:{self.user_id[:8]}"
        return f"conn:{self.connection_id}"

    @property
    def duration(self) -> float:
        return round(time.monotonic() - self.connected_at, 3)

    def audit(self, event_type: str, **extra: Any) -> None:
        """Write a connection lifecycle audit record."""
        audit_ws_connection(
            event_type=event_type,
            endpoint=self.endpoint,
            user_id=self.user_id,
            origin=self.origin,
            connection_id=self.connection_id,
            **extra,
        )
