"""Submission content checks (core domain)."""

from __future__ import annotations

from typing import Optional

from core.models import MAX_MESSAGE_LENGTH


def normalize_message_content(content: str) -> str:
    return content.strip()


def validate_message_content(content: Optional[str]) -> Optional[str]:
    """Return an error description, or None when the content is acceptable."""

    if content is None:
        return "content is required"
    normalized = normalize_message_content(content)
    if not normalized:
        return "content must not be empty"
    if len(normalized) > MAX_MESSAGE_LENGTH:
        return f"content must be at most {MAX_MESSAGE_LENGTH} characters"
    return None
