"""Shared sanitisation helpers for log output."""

from __future__ import annotations

import re
from typing import Any

_BEARER_RE = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_TOKEN_QUERY_RE = re.compile(r"(?i)(accessToken|token|refresh_token|access_token)=([^&\s]+)")
_TOKEN_JSON_RE = re.compile(
    r"(?i)(\"(?:access_token|refresh_token|id_token)\"\s*:\s*\")([^\"]+)(\")"
)
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")


def redact_text(value: Any) -> str:
    """Return ``value`` with bearer tokens, emails and query tokens removed."""

    if value is None:
        return ""
    text = str(value)
    if not text:
        return ""
    redacted = _BEARER_RE.sub("Bearer ***", text)
    redacted = _TOKEN_QUERY_RE.sub(lambda match: f"{match.group(1)}=***", redacted)
    redacted = _TOKEN_JSON_RE.sub(
        lambda match: f"{match.group(1)}***{match.group(3)}", redacted
    )
    return _EMAIL_RE.sub("***@***", redacted)


def redact_token_fragment(value: str | None) -> str:
    """Return a shortened representation of a token-like string."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}***{trimmed[-2:]}"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def mask_identifier(value: Any) -> str:
    """Return a masked identifier suitable for log output."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    return f"{trimmed[:6]}...{trimmed[-4:]}"


__all__ = ["mask_identifier", "redact_text", "redact_token_fragment"]
