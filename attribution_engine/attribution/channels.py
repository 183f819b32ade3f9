"""
Channel Classification

Maps a visit's referrer and UTM medium onto a fixed channel taxonomy.

Classification is an ordered list of rules evaluated by a single runner;
the first matching rule wins. Domain lists live in an immutable
``ClassifierConfig`` injected at construction, so tenants and tests can
substitute their own lists without touching the rules.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from attribution_engine.attribution.params import alternative_source
from attribution_engine.attribution.referrers import (
    extract_domain,
    icon_key,
    is_direct,
    matches_pattern,
    referrer_name,
)

logger = structlog.get_logger(__name__)


class ChannelLabel(str, Enum):
    """Closed set of traffic channels"""
    DIRECT = "Direct"
    PAID_SOCIAL = "Paid social"
    DISPLAY = "Display"
    NEWSLETTER = "Newsletter"
    AI = "A.I."
    ORGANIC_SEARCH = "Organic search"
    ORGANIC_SOCIAL = "Organic social"
    AFFILIATE = "Affiliate"
    REFERRAL = "Referral"


class ClassifierConfig(BaseModel):
    """Curated domain and medium lists used by the channel rules"""

    model_config = ConfigDict(frozen=True)

    paid_mediums: Tuple[str, ...] = ("paid", "cpc", "ppc", "ad", "ads", "sponsored", "display")
    newsletter_mediums: Tuple[str, ...] = ("newsletter", "email")
    affiliate_mediums: Tuple[str, ...] = ("affiliate", "referral")
    paid_social_domains: Tuple[str, ...] = (
        "facebook", "instagram", "twitter", "^x.", "linkedin",
        "tiktok", "pinterest", "snapchat", "youtube",
    )
    newsletter_domains: Tuple[str, ...] = (
        "beehiiv", "substack", "mailchimp", "convertkit", "ghost",
    )
    ai_domains: Tuple[str, ...] = (
        "chatgpt", "openai", "perplexity", "gemini",
        "claude", "anthropic", "bard", "copilot",
    )
    search_domains: Tuple[str, ...] = (
        "google", "bing", "duckduckgo", "brave", "yandex",
        "kagi", "ecosia", "baidu", "yahoo", "ask.com",
    )
    social_domains: Tuple[str, ...] = (
        "twitter", "^x.", "facebook", "instagram", "linkedin", "reddit",
        "youtube", "medium", "producthunt", "tiktok", "pinterest", "snapchat",
        "telegram", "discord", "slack", "whatsapp", "hackernews",
        "news.ycombinator",
    )
    affiliate_max_length: int = Field(default=30, ge=1)


@dataclass(frozen=True)
class TrafficSignal:
    """Normalized classifier input"""
    referrer: Optional[str]
    host: str  # lowercased domain, "" for direct traffic
    medium: Optional[str]  # lowercased utm_medium

    @property
    def is_direct(self) -> bool:
        return not self.host


@dataclass(frozen=True)
class ChannelRule:
    """One ``predicate -> label`` step of the classification"""
    name: str
    predicate: Callable[[TrafficSignal], bool]
    label: ChannelLabel


def _host_matches(signal: TrafficSignal, patterns: Sequence[str]) -> bool:
    return bool(signal.host) and any(matches_pattern(signal.host, p) for p in patterns)


def default_rules(config: ClassifierConfig) -> List[ChannelRule]:
    """The standard rule order."""
    return [
        ChannelRule(
            "direct",
            lambda s: s.is_direct and not s.medium,
            ChannelLabel.DIRECT,
        ),
        ChannelRule(
            "paid_social",
            lambda s: s.medium in config.paid_mediums and _host_matches(s, config.paid_social_domains),
            ChannelLabel.PAID_SOCIAL,
        ),
        ChannelRule(
            "display",
            lambda s: s.medium in config.paid_mediums,
            ChannelLabel.DISPLAY,
        ),
        ChannelRule(
            "newsletter",
            lambda s: s.medium in config.newsletter_mediums or _host_matches(s, config.newsletter_domains),
            ChannelLabel.NEWSLETTER,
        ),
        ChannelRule(
            "ai_assistant",
            lambda s: _host_matches(s, config.ai_domains),
            ChannelLabel.AI,
        ),
        ChannelRule(
            "organic_search",
            lambda s: _host_matches(s, config.search_domains),
            ChannelLabel.ORGANIC_SEARCH,
        ),
        ChannelRule(
            "organic_social",
            lambda s: _host_matches(s, config.social_domains),
            ChannelLabel.ORGANIC_SOCIAL,
        ),
        ChannelRule(
            "affiliate",
            lambda s: (
                s.medium in config.affiliate_mediums
                or (bool(s.host) and len(s.host) < config.affiliate_max_length and "." not in s.host)
            ),
            ChannelLabel.AFFILIATE,
        ),
        ChannelRule("referral", lambda s: True, ChannelLabel.REFERRAL),
    ]


class ChannelClassifier:
    """
    Pure, deterministic channel classifier.

    Usage:
        classifier = ChannelClassifier()
        classifier.classify("https://google.com/search", None)
        # ChannelLabel.ORGANIC_SEARCH
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        rules: Optional[Sequence[ChannelRule]] = None,
    ):
        self.config = config or ClassifierConfig()
        self.rules: Tuple[ChannelRule, ...] = tuple(rules if rules is not None else default_rules(self.config))

    def signal(self, referrer: Optional[str], utm_medium: Optional[str]) -> TrafficSignal:
        medium = utm_medium.strip().lower() if utm_medium and utm_medium.strip() else None
        host = "" if is_direct(referrer) else (extract_domain(referrer) or referrer.strip().lower())
        return TrafficSignal(referrer=referrer, host=host, medium=medium)

    def run(self, signal: TrafficSignal) -> ChannelRule:
        """Return the first rule whose predicate accepts ``signal``."""
        for rule in self.rules:
            if rule.predicate(signal):
                return rule
        raise LookupError(f"No channel rule matched {signal!r}")

    def classify(self, referrer: Optional[str], utm_medium: Optional[str]) -> ChannelLabel:
        """Classify a visit by its referrer and UTM medium."""
        return self.run(self.signal(referrer, utm_medium)).label

    def classify_with_params(
        self,
        referrer: Optional[str],
        utm_medium: Optional[str],
        path_params: Union[str, Mapping[str, str], None],
    ) -> ChannelLabel:
        """Classify using landing parameters to fill in a missing medium."""
        source = alternative_source(referrer, utm_medium, path_params)
        return self.classify(source.referrer, source.medium)

    def referrer_name(self, referrer: Optional[str]) -> str:
        return referrer_name(referrer)

    def icon_key(self, referrer: Optional[str]) -> str:
        return icon_key(referrer)
