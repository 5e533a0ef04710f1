from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"

    # Keyed by the auth provider's user id; plan is written only by subscription sync.
    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, default="member", nullable=False)
    plan: Mapped[str] = mapped_column(String, default="free", nullable=False)
    age_band: Mapped[str | None] = mapped_column(String, nullable=True)
    # Trials grant a higher plan until trial_ends_at without touching the paid plan.
    trial_plan: Mapped[str | None] = mapped_column(String, nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UsageCounter(Base):
    __tablename__ = "usage_counters"
    __table_args__ = (Index("ix_usage_counters_period_start", "period_start"),)

    # One row per user and period; rollover inserts a new row instead of resetting.
    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    period_type: Mapped[str] = mapped_column(String, primary_key=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    searches_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_creations_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    manual_creations_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AnonymousSearch(Base):
    __tablename__ = "anonymous_searches"

    # Browser-local allowance; never reset and not shared across devices.
    client_id: Mapped[str] = mapped_column(String, primary_key=True)
    search_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_search_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_search_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SourceRule(Base):
    __tablename__ = "source_rules"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    base_url: Mapped[str] = mapped_column(String)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quality_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    # Per-source quality floor; NULL falls back to the configured default.
    min_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Term(Base):
    __tablename__ = "terms"
    __table_args__ = (
        UniqueConstraint("owner_id", "normalized_text", name="uq_terms_owner_normalized"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    text: Mapped[str] = mapped_column(String)
    normalized_text: Mapped[str] = mapped_column(String)
    slug: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Sighting(Base):
    __tablename__ = "sightings"
    __table_args__ = (
        UniqueConstraint("term_id", "url", name="uq_sightings_term_url"),
        Index("ix_sightings_term_score", "term_id", "score"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    term_id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), index=True)
    source: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    snippet: Mapped[str] = mapped_column(Text)
    score: Mapped[int] = mapped_column(Integer)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MonitoringRecord(Base):
    __tablename__ = "monitoring_records"
    __table_args__ = (
        UniqueConstraint("term_id", "owner_id", name="uq_monitoring_records_term_owner"),
        Index("ix_monitoring_records_last_checked", "last_checked_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    term_id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), index=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default="monitoring", nullable=False)
    trending_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    times_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Ordered list used as an append-only set of platform names.
    platforms_detected: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    monitoring_started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_found_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Creation(Base):
    __tablename__ = "creations"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    phrase: Mapped[str] = mapped_column(String)
    meaning: Mapped[str] = mapped_column(Text)
    example: Mapped[str] = mapped_column(Text)
    # manual or ai
    creation_type: Mapped[str] = mapped_column(String)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Lookup(Base):
    __tablename__ = "lookups"
    __table_args__ = (Index("ix_lookups_user_created", "user_id", "created_at"),)

    # One row per metered search by a signed-in user; anonymous searches are not kept.
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String)
    phrase: Mapped[str] = mapped_column(String)
    normalized_text: Mapped[str] = mapped_column(String)
    sighting_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
