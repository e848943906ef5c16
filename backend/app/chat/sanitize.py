"""Text sanitization for user-supplied chat text."""
import html


def sanitize_text(raw: object) -> str:
    """Trim whitespace and escape HTML markup.

    Non-string input sanitizes to the empty string, which callers treat as
    "nothing to send".
    """
    if not isinstance(raw, str):
        return ""
    return html.escape(raw.strip())
