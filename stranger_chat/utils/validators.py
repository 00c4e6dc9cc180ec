import re
from typing import NamedTuple, Optional

DISPLAY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 20
MESSAGE_MAX_LENGTH = 2000

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)


class ValidationResult(NamedTuple):
    ok: bool
    normalized: str
    error: Optional[str] = None


def validate_display_name(raw, min_length: int = NAME_MIN_LENGTH, max_length: int = NAME_MAX_LENGTH) -> ValidationResult:
    """
    Validates a throwaway display name:
    Length: 3-20 after trimming
    Characters: A-Z, a-z, 0-9, underscore, hyphen
    Case is preserved.
    """
    if not raw or not isinstance(raw, str):
        return ValidationResult(False, "", "Username must be a non-empty string")

    name = raw.strip()
    if not (min_length <= len(name) <= max_length):
        return ValidationResult(False, name, f"Username must be between {min_length} and {max_length} characters")
    if not DISPLAY_NAME_PATTERN.match(name):
        return ValidationResult(False, name, "Username can only contain letters, numbers, underscores, and hyphens")
    return ValidationResult(True, name)


def escape_html(text: str) -> str:
    # '&' first so the other entities are not escaped twice
    for char, entity in _HTML_ESCAPES:
        text = text.replace(char, entity)
    return text


def validate_message(raw, max_length: int = MESSAGE_MAX_LENGTH) -> ValidationResult:
    """
    Validates chat text and escapes it for rendering as markup.
    Over-long text fails with the normalized value truncated to max_length.
    """
    if not raw or not isinstance(raw, str):
        return ValidationResult(False, "", "Message must be a non-empty string")

    text = raw.strip()
    if not text:
        return ValidationResult(False, "", "Message cannot be empty")
    if len(text) > max_length:
        return ValidationResult(False, text[:max_length], f"Message exceeds maximum length of {max_length} characters")
    return ValidationResult(True, escape_html(text))
