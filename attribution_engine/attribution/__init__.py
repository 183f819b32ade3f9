"""
Attribution Module

Channel classification, referrer normalization and landing-parameter
attribution.
"""
from .channels import ChannelClassifier, ChannelLabel, ChannelRule, ClassifierConfig, default_rules
from .params import alternative_source, parse_landing_params
from .referrers import DIRECT_NAME, UNKNOWN_DIRECT_NAME, extract_domain, icon_key, referrer_name

__all__ = [
    "ChannelClassifier",
    "ChannelLabel",
    "ChannelRule",
    "ClassifierConfig",
    "default_rules",
    "alternative_source",
    "parse_landing_params",
    "DIRECT_NAME",
    "UNKNOWN_DIRECT_NAME",
    "extract_domain",
    "icon_key",
    "referrer_name",
]
