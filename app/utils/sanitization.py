"""
Input sanitization for free-text fields (titles, names, notes).

Values are stored as typed by the user minus anything that would execute
when rendered by the dashboard.
"""

import re
from typing import Optional


_SCRIPT_TAG = re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL)
_STYLE_TAG = re.compile(r'<style[^>]*>.*?</style>', re.IGNORECASE | re.DOTALL)
_EVENT_HANDLER = re.compile(r'on\w+\s*=\s*(["\'][^"\']*["\']|[^\s>]+)', re.IGNORECASE)
_SCRIPT_URL = re.compile(r'(javascript|vbscript)\s*:', re.IGNORECASE)


def strip_dangerous_tags(content: Optional[str]) -> Optional[str]:
    """
    Remove script/style tags, inline event handlers and script URLs.

    Args:
        content: raw user input

    Returns:
        The cleaned text, or the input unchanged when empty/None
    """
    if not content:
        return content

    content = _SCRIPT_TAG.sub('', content)
    content = _STYLE_TAG.sub('', content)
    content = _EVENT_HANDLER.sub('', content)
    content = _SCRIPT_URL.sub('', content)

    return content


def clean_text(value: Optional[str]) -> Optional[str]:
    """strip_dangerous_tags + trim; blank strings become None"""
    if value is None:
        return None
    cleaned = strip_dangerous_tags(value).strip()
    return cleaned or None


def sanitize_search_query(query: Optional[str], max_length: int = 100) -> str:
    """Make a user search term safe for use inside a LIKE pattern"""
    if not query:
        return ""
    query = query.strip()[:max_length]
    # LIKE wildcards typed by the user are matched literally
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
