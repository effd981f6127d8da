"""Error message sanitization to prevent credential leakage."""

from __future__ import annotations

import os
import re


def sanitize_error(message: str) -> str:
    """Redact API keys and the user's home path from an error message."""
    if not message:
        return message

    sanitized = message
    sanitized = re.sub(r"sk-or-v1-[a-zA-Z0-9_-]+", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"sk-[a-zA-Z0-9_-]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)
    # Explorer keys travel in the query string
    sanitized = re.sub(r"apikey=[^&\s]+", "apikey=[REDACTED]", sanitized, flags=re.IGNORECASE)

    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized


def truncate(text: str, limit: int = 300) -> str:
    """Shorten text for console output and report notes."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
