import re

_SCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)


def sanitize_text(value):
    """Strips angle brackets and javascript: schemes, then trims. Non-strings pass through."""
    if not isinstance(value, str):
        return value
    return _SCRIPT_SCHEME.sub("", value.replace("<", "").replace(">", "")).strip()
