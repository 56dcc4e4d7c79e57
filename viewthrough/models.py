"""SQLAlchemy ORM models and enums.

This module defines the domain schema using UUID primary keys and explicit
relationships. Tables fall into three groups:

- Tenancy: `workspaces`, `users`
- Event store (read-only for the view-through engine): `pixel_events`,
  `ad_impressions`, `customer_journeys`, `journey_touchpoints`
- Attribution output: `attributions` (click model), `attribution_daily_summaries`
  (click aggregates + view-through columns), `view_through_results`
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Column, String, DateTime, Date, Enum, Integer, ForeignKey, Numeric, JSON, UniqueConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class RoleEnum(str, enum.Enum):
    owner = "Owner"
    admin = "Admin"
    viewer = "Viewer"


class AttributionModelEnum(str, enum.Enum):
    """Click attribution model identifiers."""
    first_click = "first_click"
    last_click = "last_click"
    linear = "linear"
    time_decay = "time_decay"
    position_based = "position_based"


# Core models ----------------------------------------------------

class Workspace(Base):
    """Workspace represents a company/organization account.

    A workspace is the tenant boundary: every event, attribution result and
    report belongs to exactly one workspace.
    """
    __tablename__ = "workspaces"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="workspace")

    def __str__(self):
        return self.name


class User(Base):
    """User represents a person who can access the dashboard.

    `workspace_id` is the user's active workspace; API calls are scoped to it.
    """
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    role = Column(Enum(RoleEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    workspace = relationship("Workspace", back_populates="users")

    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.name} ({self.email})"


# Event store ----------------------------------------------------

class PixelEvent(Base):
    """Immutable raw event log from the web pixel (event sourcing).

    WHAT: Stores every event from the tracking pixel
    WHY: Never lose data; attribution can always be recomputed from here

    Purchases are `checkout_completed` events carrying `order_id` and `revenue`.
    """
    __tablename__ = "pixel_events"
    __table_args__ = (
        Index("ix_pixel_events_workspace_type_created", "workspace_id", "event_type", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    visitor_id = Column(String, nullable=True)

    # Client-generated UUID for deduplication
    event_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, default={})

    # Purchase fields (only set on checkout_completed)
    order_id = Column(String, nullable=True)
    revenue = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.event_type} - {self.visitor_id} - {self.created_at}"


class AdImpression(Base):
    """Daily impression rollup pulled from the ad platforms.

    WHAT: Impressions and reach per platform/campaign/adset/ad per day
    WHY: Input signal for modeled view-through attribution (nobody clicks,
         so impressions are all we have)
    """
    __tablename__ = "ad_impressions"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "provider", "campaign_id", "adset_id", "ad_id", "date",
            name="uq_ad_impression_day",
        ),
        Index("ix_ad_impressions_workspace_date", "workspace_id", "date"),
        Index("ix_ad_impressions_workspace_provider_date", "workspace_id", "provider", "date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    # Provider: meta, tiktok, google, newsbreak
    provider = Column(String, nullable=False)
    campaign_id = Column(String, nullable=True)
    campaign_name = Column(String, nullable=True)
    adset_id = Column(String, nullable=True)
    ad_id = Column(String, nullable=True)

    impressions = Column(Integer, nullable=False, default=0)
    reach = Column(Integer, nullable=False, default=0)
    frequency = Column(Numeric(6, 2), nullable=False, default=0)
    date = Column(Date, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.provider}:{self.campaign_id} {self.date} ({self.impressions} imps)"


class CustomerJourney(Base):
    """Tracks a visitor across sessions for attribution.

    WHAT: One journey per visitor per workspace
    WHY: Links click touchpoints to the visitor who later purchases
    """
    __tablename__ = "customer_journeys"
    __table_args__ = (
        UniqueConstraint("workspace_id", "visitor_id", name="uq_journey_visitor"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    visitor_id = Column(String, nullable=False)

    first_seen_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_seen_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    touchpoint_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    touchpoints = relationship("JourneyTouchpoint", back_populates="journey", cascade="all, delete-orphan")

    def __str__(self):
        return f"Journey {self.visitor_id} - {self.touchpoint_count} touchpoints"


class JourneyTouchpoint(Base):
    """Each marketing click (UTMs, click IDs) in a customer journey.

    WHAT: Records each click touchpoint with its resolved provider
    WHY: Click attribution credits these; view-through skips their providers
    """
    __tablename__ = "journey_touchpoints"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    journey_id = Column(UUID(as_uuid=True), ForeignKey("customer_journeys.id", ondelete="CASCADE"), nullable=False)

    event_type = Column(String, nullable=False, default="page_viewed")

    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    fbclid = Column(String, nullable=True)
    gclid = Column(String, nullable=True)
    ttclid = Column(String, nullable=True)

    # Resolved platform (meta, google, tiktok, ...)
    provider = Column(String, nullable=True)

    touched_at = Column(DateTime, nullable=False)

    journey = relationship("CustomerJourney", back_populates="touchpoints")

    def __str__(self):
        source = self.utm_source or self.provider or "unknown"
        return f"{self.event_type} from {source} at {self.touched_at}"


# Attribution output ---------------------------------------------

class Attribution(Base):
    """Click model attribution records (credit per touchpoint per order).

    WHAT: Written by the click attribution batch, read by the combined report
    WHY: View-through credit is additive on top of these numbers
    """
    __tablename__ = "attributions"
    __table_args__ = (
        UniqueConstraint("touchpoint_id", "order_id", "attribution_model", name="uq_attribution_touchpoint_order_model"),
        Index("ix_attributions_workspace_model", "workspace_id", "attribution_model"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)

    journey_id = Column(UUID(as_uuid=True), ForeignKey("customer_journeys.id"), nullable=True)
    touchpoint_id = Column(UUID(as_uuid=True), ForeignKey("journey_touchpoints.id", ondelete="CASCADE"), nullable=True)
    order_id = Column(String, nullable=False)

    # Provider: meta, google, tiktok, direct, organic, unknown
    provider = Column(String, nullable=False)
    attribution_model = Column(String, nullable=False, default=AttributionModelEnum.last_click.value)

    revenue = Column(Numeric(12, 2), nullable=False, default=0)
    # Fraction of the conversion credited to this touchpoint (0.0-1.0)
    attribution_credit = Column(Numeric(10, 6), nullable=False, default=1.0)
    attributed_revenue = Column(Numeric(12, 2), nullable=False, default=0)

    order_created_at = Column(DateTime, nullable=True)
    attributed_at = Column(DateTime, default=datetime.utcnow)

    touchpoint = relationship("JourneyTouchpoint")

    def __str__(self):
        return f"Attribution {self.order_id} -> {self.provider} ({self.attribution_model})"


class AttributionDailySummary(Base):
    """Daily attribution rollup per model and platform.

    WHAT: Click metrics are written by the click attribution batch; the
          view-through merge only updates the two `view_through_*` columns
    WHY: Dashboards read one row per day/platform instead of raw results
    """
    __tablename__ = "attribution_daily_summaries"
    __table_args__ = (
        Index("ix_attr_summary_workspace_model_date", "workspace_id", "attribution_model", "date"),
        Index("ix_attr_summary_workspace_provider_date", "workspace_id", "provider", "date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    date = Column(Date, nullable=False)
    attribution_model = Column(String, nullable=False)
    provider = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)

    attributed_conversions = Column(Numeric(10, 4), nullable=False, default=0)
    attributed_revenue = Column(Numeric(12, 2), nullable=False, default=0)
    touchpoints = Column(Integer, nullable=False, default=0)
    unique_visitors = Column(Integer, nullable=False, default=0)

    # Owned by the view-through merge
    view_through_conversions = Column(Numeric(10, 4), nullable=False, default=0)
    view_through_revenue = Column(Numeric(12, 2), nullable=False, default=0)

    computed_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.date} {self.provider} ({self.attribution_model})"


class ViewThroughResult(Base):
    """Modeled view-through credit per order/platform/campaign.

    WHAT: Output of the view-through engine; recomputation upserts in place
    WHY: Credits platforms whose ads were (probably) seen but never clicked

    `campaign_id` is never NULL ("" when the impressions had no campaign) so
    the composite conflict key always matches on recompute.
    """
    __tablename__ = "view_through_results"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "visitor_id", "order_id", "provider", "campaign_id",
            name="uq_view_through_result",
        ),
        Index("ix_view_through_workspace_date", "workspace_id", "conversion_date"),
        Index("ix_view_through_workspace_provider", "workspace_id", "provider"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    visitor_id = Column(String, nullable=False)
    order_id = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    campaign_id = Column(String, nullable=False, default="")

    revenue = Column(Numeric(12, 2), nullable=False, default=0)
    # Modeled probability that this view led to the conversion
    view_probability = Column(Numeric(10, 6), nullable=False, default=0)
    attributed_revenue = Column(Numeric(12, 2), nullable=False, default=0)

    converted_at = Column(DateTime, nullable=False)
    conversion_date = Column(Date, nullable=False)

    model_version = Column(String, nullable=False, default="v1")
    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __str__(self):
        return f"{self.order_id} -> {self.provider}:{self.campaign_id} (${self.attributed_revenue})"
