"""Small normalizers shared by provider adapters."""

from __future__ import annotations

import hashlib
import hmac
import re

_NON_DIGITS = re.compile(r"\D+")

QUOTE_EXCERPT_LENGTH = 50


def digits_only(phone: str | None) -> str:
    return _NON_DIGITS.sub("", phone or "")


def to_e164(phone: str | None) -> str:
    digits = digits_only(phone)
    return f"+{digits}" if digits else ""


def classify_mime(content_type: str | None) -> str:
    """Map a MIME type to the inbox message type."""
    value = (content_type or "").lower()
    if value.startswith("image/"):
        return "image"
    if value.startswith("video/"):
        return "video"
    if value.startswith("audio/"):
        return "audio"
    return "document"


def media_placeholder(message_type: str) -> str:
    return f"[{message_type.upper()}]"


def quote_excerpt(text: str | None, limit: int = QUOTE_EXCERPT_LENGTH) -> str:
    value = text or ""
    if len(value) > limit:
        return f"{value[:limit]}..."
    return value


def hub_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_hub_signature(body: bytes, header: str | None, secrets: list[str]) -> bool:
    """Check a Meta ``X-Hub-Signature-256`` header against any configured app secret."""
    if not header:
        return False
    return any(
        hmac.compare_digest(hub_signature(body, secret), header) for secret in secrets if secret
    )
