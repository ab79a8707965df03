# ==============================================================================
# Attribution Resolver - Pure Domain Logic
# ==============================================================================
"""
Turns raw request query parameters and a referrer into SourceAttributes.

Precedence for the source type:
    1. any campaign (utm_*) parameter present    -> LANDING_PAGE
    2. referrer matches an email-link pattern     -> EMAIL
    3. visitor arrived through a funnel            -> FUNNEL
    4. otherwise                                   -> DIRECT

Resolution has no side effects and runs exactly once per session, at
creation. Existing sessions are never re-resolved.
"""

import re
from collections.abc import Iterable, Mapping
from urllib.parse import urlsplit

from attribution.core.models import SourceAttributes, SourceType
from attribution.utils.config import DEFAULT_EMAIL_REFERRER_PATTERNS

MAX_VALUE_LENGTH = 255

CAMPAIGN_PARAMS = {
    "source": "utm_source",
    "medium": "utm_medium",
    "campaign": "utm_campaign",
    "term": "utm_term",
    "content": "utm_content",
}

FUNNEL_PARAMS = ("funnel_id", "fid")

# utm_medium -> channel
MEDIUM_CHANNELS = {
    "cpc": "paid_search",
    "ppc": "paid_search",
    "paidsearch": "paid_search",
    "paid_search": "paid_search",
    "email": "email",
    "e-mail": "email",
    "newsletter": "email",
    "social": "social",
    "social-media": "social",
    "paid_social": "paid_social",
    "paidsocial": "paid_social",
    "display": "display",
    "banner": "display",
    "cpm": "display",
    "affiliate": "affiliate",
    "referral": "referral",
    "organic": "organic_search",
    "sms": "sms",
}


def _first(value) -> str | None:
    """Collapse a multi-valued parameter to its first value."""
    if isinstance(value, (list, tuple)):
        return _first(value[0]) if value else None
    if value is None:
        return None
    return str(value)


def normalize_value(value, lower: bool = False) -> str | None:
    """
    Normalize a raw parameter value.

    Trims whitespace and caps length. Absent and blank values become None,
    never an empty string.
    """
    text = _first(value)
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    text = text[:MAX_VALUE_LENGTH]
    return text.lower() if lower else text


def _split_referrer(referrer: str) -> tuple[str | None, str]:
    """Return (host, path) for a referrer, tolerating a missing scheme."""
    candidate = referrer if "://" in referrer else f"//{referrer}"
    try:
        parts = urlsplit(candidate)
        host = parts.hostname
    except ValueError:
        return None, ""
    return host, parts.path or ""


class AttributionResolver:
    """
    Resolves SourceAttributes from request data.

    Args:
        email_referrer_patterns: Regexes matched against "host/path" of the
            referrer to recognize clicks from email links.
    """

    def __init__(self, email_referrer_patterns: Iterable[str] | None = None):
        patterns = (
            email_referrer_patterns
            if email_referrer_patterns is not None
            else DEFAULT_EMAIL_REFERRER_PATTERNS
        )
        self._email_patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def is_email_referrer(self, referrer: str | None) -> bool:
        """Whether the referrer looks like a click from an email link."""
        if not referrer:
            return False
        host, path = _split_referrer(referrer)
        if not host:
            return False
        target = f"{host}{path}"
        return any(p.search(target) for p in self._email_patterns)

    def resolve(
        self,
        raw_query_params: Mapping | None,
        referrer: str | None,
        funnel_id: str | None = None,
    ) -> SourceAttributes:
        """
        Build SourceAttributes from query parameters and referrer.

        Args:
            raw_query_params: Request query parameters; values may be lists
            referrer: Raw Referer header value, if any
            funnel_id: Funnel context supplied by the page layer, if any

        Returns:
            Frozen SourceAttributes with source_type resolved by precedence
        """
        params = {str(k).lower(): v for k, v in (raw_query_params or {}).items()}

        campaign = {
            field: normalize_value(params.get(param), lower=field in ("source", "medium"))
            for field, param in CAMPAIGN_PARAMS.items()
        }

        funnel = normalize_value(funnel_id)
        if funnel is None:
            funnel = next(
                (v for v in (normalize_value(params.get(p)) for p in FUNNEL_PARAMS) if v),
                None,
            )

        channel = normalize_value(params.get("channel"), lower=True)
        if channel is None and campaign["medium"]:
            channel = MEDIUM_CHANNELS.get(campaign["medium"])

        clean_referrer = normalize_value(referrer)
        referrer_domain = None
        if clean_referrer:
            host, _ = _split_referrer(clean_referrer)
            referrer_domain = host.lower() if host else None

        if any(campaign.values()):
            source_type = SourceType.LANDING_PAGE
        elif self.is_email_referrer(clean_referrer):
            source_type = SourceType.EMAIL
        elif funnel:
            source_type = SourceType.FUNNEL
        else:
            source_type = SourceType.DIRECT

        if channel is None and source_type == SourceType.EMAIL:
            channel = "email"

        return SourceAttributes(
            source_type=source_type,
            channel=channel,
            referrer=clean_referrer,
            referrer_domain=referrer_domain,
            funnel_id=funnel,
            **campaign,
        )


_default_resolver = AttributionResolver()


def resolve(
    raw_query_params: Mapping | None,
    referrer: str | None,
    funnel_id: str | None = None,
) -> SourceAttributes:
    """Resolve attribution with the default email referrer patterns."""
    return _default_resolver.resolve(raw_query_params, referrer, funnel_id)
