"""Input sanitisation for browser-submitted intake data.

All helpers are idempotent: feeding their output back in returns it unchanged.
"""
import html
import re
from typing import Any

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254


def sanitize_string(value: Any, max_length: int = 500) -> str:
    """Truncate then HTML-escape. Non-strings become ""."""
    if not isinstance(value, str):
        return ""
    # Unescape first so already-sanitised input is not escaped twice
    raw = html.unescape(value)[:max_length].strip()
    return html.escape(raw, quote=True)


def sanitize_email(value: Any) -> str:
    """Lowercased, trimmed email, or "" when it does not look like an address."""
    if not isinstance(value, str):
        return ""
    email = value.lower().strip()[:MAX_EMAIL_LENGTH]
    return email if EMAIL_PATTERN.match(email) else ""


def sanitize_number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float("inf"), float("-inf")):
        return default
    return number


def sanitize_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)
