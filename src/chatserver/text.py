"""Text sanitization and link processing for chat content."""

import re

# Bare HTTP(S) URLs up to the next whitespace or quote character
URL_PATTERN = re.compile(r"(https?://[^\s\"']+)")

_TAG_CHARS = re.compile(r"[<>]")


def sanitize_input(value: object) -> str:
    """Strip angle brackets and surrounding whitespace.

    Non-string input sanitizes to the empty string.
    """
    if not isinstance(value, str):
        return ""
    return _TAG_CHARS.sub("", value).strip()


def linkify(text: str) -> str:
    """Wrap bare HTTP(S) URLs in anchor markup."""
    return URL_PATTERN.sub(
        r'<a href="\1" target="_blank" rel="noopener noreferrer">\1</a>', text
    )
