"""
Landing Parameter Attribution

Parses landing-page query parameters (UTM tags, ad-platform click ids and
``ref``/``via`` referral codes) and resolves them into the
referrer/medium pair used for channel classification.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlsplit

from attribution_engine.attribution.referrers import is_direct

# click id -> referrer host used for classification
AD_CLICK_IDS = (
    ("gclid", "google.com"),
    ("wbraid", "google.com"),
    ("gbraid", "google.com"),
    ("fbclid", "facebook.com"),
    ("li_fat_id", "linkedin.com"),
    ("msclkid", "bing.com"),
    ("ttclid", "tiktok.com"),
    ("twclid", "x.com"),
)

REFERRAL_PARAMS = ("ref", "via")


@dataclass(frozen=True)
class AlternativeSource:
    """Referrer/medium pair implied by landing parameters"""
    referrer: Optional[str]
    medium: Optional[str]


def parse_landing_params(value: Union[str, Mapping[str, str], None]) -> Dict[str, str]:
    """
    Normalize landing parameters into a flat dict.

    Accepts a full URL, a bare query string (with or without ``?``) or an
    existing mapping. Keys are lowercased; the first value of a repeated
    key wins; blank values are dropped.
    """
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(k).lower(): str(v) for k, v in value.items() if v not in (None, "")}

    text = value.strip()
    if "://" in text:
        text = urlsplit(text).query
    elif "?" in text:
        text = text.split("?", 1)[1]

    params: Dict[str, str] = {}
    for key, item in parse_qsl(text, keep_blank_values=False):
        params.setdefault(key.lower(), item)
    return params


def ad_click_host(params: Mapping[str, str]) -> Optional[str]:
    """Referrer host of the first ad platform whose click id is present."""
    for click_id, host in AD_CLICK_IDS:
        if params.get(click_id):
            return host
    return None


def alternative_source(
    referrer: Optional[str],
    utm_medium: Optional[str],
    params: Union[str, Mapping[str, str], None],
) -> AlternativeSource:
    """
    Referrer/medium pair for classification when landing parameters are known.

    An explicit ``utm_medium`` always wins. Otherwise ad click ids imply
    ``cpc`` with the platform as referrer, and ``ref``/``via`` imply
    ``referral`` with the code as referrer when no referrer was sent.
    """
    params = parse_landing_params(params)
    medium = utm_medium or params.get("utm_medium")
    if medium:
        return AlternativeSource(referrer=referrer, medium=medium)

    host = ad_click_host(params)
    if host is not None:
        return AlternativeSource(referrer=host, medium="cpc")

    for key in REFERRAL_PARAMS:
        if params.get(key):
            return AlternativeSource(
                referrer=referrer if not is_direct(referrer) else params[key],
                medium="referral",
            )

    return AlternativeSource(referrer=referrer, medium=None)
