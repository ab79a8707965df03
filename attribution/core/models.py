# ==============================================================================
# Attribution Domain Models
# ==============================================================================
"""
Pydantic models for sessions, cart linkages and funnel snapshots.

These models are used for:
- Validating records read back from any store tier
- Serializing records into the cache tiers (JSON) and the durable tier
- Type safety throughout the application

All models are frozen: a change to a session produces a new model instance
via model_copy(), mirroring the compare-and-set discipline of the stores.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Session lifecycle states. Transitions only leave ACTIVE."""

    ACTIVE = "ACTIVE"
    CONVERTED = "CONVERTED"
    EXPIRED = "EXPIRED"


class SourceType(str, Enum):
    """Attribution tag carried from a session onto its cart linkage."""

    DIRECT = "DIRECT"
    LANDING_PAGE = "LANDING_PAGE"
    FUNNEL = "FUNNEL"
    EMAIL = "EMAIL"


class SourceAttributes(BaseModel):
    """
    Normalized traffic-source metadata, stamped once at session creation.

    Every optional field is None when the value was absent or blank; an empty
    string is never stored.
    """

    model_config = ConfigDict(frozen=True)

    source_type: SourceType = Field(SourceType.DIRECT, description="Resolved attribution tag")
    source: str | None = Field(None, description="utm_source")
    medium: str | None = Field(None, description="utm_medium")
    campaign: str | None = Field(None, description="utm_campaign")
    term: str | None = Field(None, description="utm_term")
    content: str | None = Field(None, description="utm_content")
    channel: str | None = Field(None, description="Marketing channel")
    referrer: str | None = Field(None, description="Raw referrer URL")
    referrer_domain: str | None = Field(None, description="Host part of the referrer")
    funnel_id: str | None = Field(None, description="Funnel the visitor arrived through")

    @property
    def has_campaign(self) -> bool:
        """Whether any campaign parameter was supplied."""
        return any((self.source, self.medium, self.campaign, self.term, self.content))


class DeviceInfo(BaseModel):
    """Device details parsed from the user agent at session creation."""

    model_config = ConfigDict(frozen=True)

    device_type: str | None = None
    browser: str | None = None
    os: str | None = None


class Session(BaseModel):
    """
    One visitor's interaction window with a public page.

    Attributes:
        token: Opaque unguessable identifier, the primary lookup key
        page_id: Page visited; immutable
        visitor_fingerprint: Optional weak correlation key
        source_attributes: Attribution, set once at creation
        device: Optional parsed user agent details
        cart_id: Linked cart, set at most once
        state: ACTIVE, CONVERTED or EXPIRED
        order_id: Set only on conversion
        version: Incremented by every durable mutation
    """

    model_config = ConfigDict(frozen=True)

    token: str
    page_id: str
    visitor_fingerprint: str | None = None
    source_attributes: SourceAttributes = Field(default_factory=SourceAttributes)
    device: DeviceInfo | None = None
    cart_id: str | None = None
    state: SessionState = SessionState.ACTIVE
    order_id: str | None = None
    created_at: datetime
    last_activity_at: datetime
    converted_at: datetime | None = None
    expired_at: datetime | None = None
    version: int = 1

    @model_validator(mode="after")
    def _order_iff_converted(self) -> "Session":
        if (self.state == SessionState.CONVERTED) != (self.order_id is not None):
            raise ValueError("order_id must be set if and only if state is CONVERTED")
        return self

    @property
    def source_type(self) -> SourceType:
        """Attribution tag of this session."""
        return self.source_attributes.source_type

    def is_past_horizon(self, now: datetime, horizon: timedelta) -> bool:
        """Whether the inactivity horizon has elapsed since the last activity."""
        return now - self.last_activity_at > horizon

    def to_record(self) -> dict:
        """Serialize to a JSON-compatible dict for the cache tiers."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, data: dict) -> "Session":
        """Deserialize a dict produced by to_record() or a durable row."""
        return cls.model_validate(data)


class CartLinkage(BaseModel):
    """The immutable association between a session and the cart it produced."""

    model_config = ConfigDict(frozen=True)

    cart_id: str
    session_token: str
    source_type: SourceType
    page_id: str
    linked_at: datetime

    def to_record(self) -> dict:
        """Serialize to a JSON-compatible dict."""
        return self.model_dump(mode="json")


class FunnelWindow(BaseModel):
    """Half-open time window [start, end) over session creation time."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "FunnelWindow":
        if self.end <= self.start:
            raise ValueError("window end must be after window start")
        return self

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> "FunnelWindow":
        """Window covering the trailing number of days."""
        end = now or utcnow()
        return cls(start=end - timedelta(days=days), end=end)


class FunnelCounts(BaseModel):
    """Cumulative funnel counts: each stage includes every later stage."""

    views: int = 0
    cart_adds: int = 0
    checkout_starts: int = 0
    orders: int = 0


class FunnelSnapshot(BaseModel):
    """
    Derived, recomputable funnel aggregate for one page and time window.

    Stage fields (viewed_only .. converted) classify each consistent session
    into exactly one stage. The cumulative fields (views .. orders) are the
    classic funnel reading of the same data. Sessions with inconsistent
    state are counted only in views and anomalies.
    """

    page_id: str
    window_start: datetime
    window_end: datetime

    viewed_only: int = 0
    cart_linked: int = 0
    checkout_started: int = 0
    converted: int = 0

    views: int = 0
    cart_adds: int = 0
    checkout_starts: int = 0
    orders: int = 0

    anomalies: int = 0
    anomaly_reasons: dict[str, int] = Field(default_factory=dict)
    by_source_type: dict[SourceType, FunnelCounts] = Field(default_factory=dict)
    checkout_lookup_failures: int = 0
    orders_pending: int | None = None
    computed_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def conversion_rate(self) -> float:
        """Orders as a percentage of views."""
        return (self.orders / self.views * 100) if self.views > 0 else 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cart_abandonment(self) -> float:
        """Carts that did not convert, as a percentage of carts."""
        if self.cart_adds == 0:
            return 0.0
        return (self.cart_adds - self.orders) / self.cart_adds * 100
