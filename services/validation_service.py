import re


HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


def normalize_color(raw, default="#3b82f6"):
    value = str(raw or "").strip()
    if HEX_COLOR_PATTERN.match(value):
        return value.lower()
    return default


def clean_text(raw):
    """Strip a free-text field; empty strings become None."""
    value = (raw or "").strip() if isinstance(raw, str) else raw
    return value or None
