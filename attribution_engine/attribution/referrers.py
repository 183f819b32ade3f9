"""
Referrer Normalization

Domain extraction, display names and icon keys for referrer strings.
Referrers arrive either as full URLs or as bare hosts, sometimes with
``www.`` and sometimes with a trailing path.
"""

from typing import Optional
from urllib.parse import urlsplit

DIRECT_NAME = "Direct/None"
UNKNOWN_DIRECT_NAME = "Direct/Unknown"
DIRECT_ICON = "direct"

_DIRECT_TOKENS = frozenset({"", "direct", "(direct)", "none", "(none)"})

# (substring or ^prefix, display name); checked in order against the host
_WELL_KNOWN_NAMES = (
    ("^x.", "X"),
    ("twitter", "X"),
    ("google", "Google"),
    ("youtube", "YouTube"),
    ("facebook", "Facebook"),
    ("instagram", "Instagram"),
    ("linkedin", "LinkedIn"),
)


def is_direct(referrer: Optional[str]) -> bool:
    """True when the referrer carries no source information."""
    return referrer is None or referrer.strip().lower() in _DIRECT_TOKENS


def extract_domain(referrer: Optional[str]) -> Optional[str]:
    """
    Lowercased host of a referrer, without ``www.``.

    Bare values without a scheme (``news.ycombinator.com/item``,
    ``newsletter``) are read as hosts. Returns None for direct traffic.
    """
    if is_direct(referrer):
        return None
    value = referrer.strip().lower()
    if "://" not in value:
        value = "//" + value
    try:
        host = urlsplit(value).hostname
    except ValueError:
        host = None
    if not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host


def matches_pattern(host: str, pattern: str) -> bool:
    """Case-insensitive substring match; a leading ``^`` anchors to the host start."""
    if pattern.startswith("^"):
        return host.startswith(pattern[1:])
    return pattern in host


def referrer_name(referrer: Optional[str]) -> str:
    """Display name used to group referrer rows."""
    host = extract_domain(referrer)
    if host is None:
        return DIRECT_NAME
    for pattern, name in _WELL_KNOWN_NAMES:
        if matches_pattern(host, pattern):
            return name
    return host


def icon_key(referrer: Optional[str]) -> str:
    """Bare host used by renderers to build favicon URLs."""
    return extract_domain(referrer) or DIRECT_ICON
