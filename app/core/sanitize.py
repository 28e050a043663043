from __future__ import annotations

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_EMAIL = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
_SECRETISH = re.compile(r"(?i)(secret|token|password|authorization)(\s*[=:]\s*)\S+")

LOG_VALUE_MAX_LENGTH = 500


def sanitize_text(value: str | None, max_length: int = 10_000) -> str | None:
    """Drop NUL bytes and bound free text before it is persisted."""
    if value is None:
        return None
    cleaned = value.replace("\x00", "")
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def sanitize_for_log(value: Any, max_length: int = LOG_VALUE_MAX_LENGTH) -> str:
    """Render an arbitrary value for logs without control characters, secrets or full emails."""
    text = value if isinstance(value, str) else repr(value)
    text = _CONTROL_CHARS.sub(" ", text)
    text = _SECRETISH.sub(r"\1\2[redacted]", text)
    text = _EMAIL.sub(r"\1***@\2", text)
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text
