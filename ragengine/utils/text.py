"""Text normalization and hashing helpers."""

import hashlib
import re

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]')
_INLINE_WHITESPACE = re.compile(r"[ \t\f\v\u00a0]+")
_SPACE_AROUND_NEWLINE = re.compile(r' ?\n ?')
_EXTRA_NEWLINES = re.compile(r'\n{3,}')


def normalize_text(text: str) -> str:
    """
    Clean and normalize text.

    Collapses runs of spaces and tabs, keeps single line breaks and at most one
    blank line between paragraphs, and strips control characters.

    Args:
        text: Raw text

    Returns:
        Normalized text
    """
    if not text:
        return ""

    # Normalize newlines
    text = text.replace('\r\n', '\n').replace('\r', '\n')

    # Remove control characters except newlines and tabs
    text = _CONTROL_CHARS.sub('', text)

    # Remove excessive whitespace
    text = _INLINE_WHITESPACE.sub(' ', text)
    text = _SPACE_AROUND_NEWLINE.sub('\n', text)

    # Remove multiple consecutive newlines (keep max 2)
    text = _EXTRA_NEWLINES.sub('\n\n', text)

    return text.strip()


def content_hash(text: str) -> str:
    """SHA-256 hex digest of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
