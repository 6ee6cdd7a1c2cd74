"""Text cleanup for scraped listing copy."""

import re
from typing import Final

_EMOJI_PATTERN: Final = re.compile(
    "["
    "\U0001f600-\U0001f64f"
    "\U0001f300-\U0001f5ff"
    "\U0001f680-\U0001f6ff"
    "\U0001f1e0-\U0001f1ff"
    "\U00002600-\U000026ff"
    "\U00002700-\U000027bf"
    "]",
)
_CONTROL_PATTERN: Final = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_WHITESPACE_PATTERN: Final = re.compile(r"\s+")

EMPTY_DESCRIPTION: Final = "No description"


def clean_text(text: str | None) -> str:
    """Strip emoji and control characters and collapse whitespace.

    Args:
        text: Raw description text as scraped.

    Returns:
        Cleaned single-line text, or "No description" for empty input.
    """
    if not text:
        return EMPTY_DESCRIPTION
    cleaned = _EMOJI_PATTERN.sub("", text)
    cleaned = _CONTROL_PATTERN.sub("", cleaned)
    cleaned = _WHITESPACE_PATTERN.sub(" ", cleaned).strip()
    return cleaned or EMPTY_DESCRIPTION
