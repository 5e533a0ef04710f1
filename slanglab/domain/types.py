from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class Plan(str, Enum):
    FREE = "Free"
    SEARCH_PRO = "SearchPro"
    LAB_PRO = "LabPro"

    @property
    def rank(self) -> int:
        return _PLAN_RANK[self]


_PLAN_RANK = {Plan.FREE: 0, Plan.SEARCH_PRO: 1, Plan.LAB_PRO: 2}


class Capability(str, Enum):
    SEARCH = "search"
    AI_CREATION = "ai_creation"
    MANUAL_CREATION = "manual_creation"
    TRACKING = "tracking"
    ADMIN_FEATURE = "admin_feature"
    SHARE = "share"


class DenialReason(str, Enum):
    NONE = "none"
    AUTHENTICATION_REQUIRED = "authentication_required"
    PLAN_REQUIRED = "plan_required"
    ADMIN_REQUIRED = "admin_required"
    QUOTA_EXCEEDED = "quota_exceeded"
    AGE_RESTRICTED = "age_restricted"


class DecisionStatus(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    # Principal still resolving; callers must neither execute nor render a denial.
    PENDING = "pending"


class MonitoringStatus(str, Enum):
    MONITORING = "monitoring"
    SPOTTED = "spotted"
    TRENDING = "trending"
    DORMANT = "dormant"


class Platform(str, Enum):
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    REDDIT = "reddit"
    YOUTUBE = "youtube"
    WEB = "web"


class Period(str, Enum):
    DAY = "day"
    WEEK = "week"


class AgeBand(str, Enum):
    CHILD = "11-13"
    TEEN = "14-17"
    ADULT = "18+"


_PLAN_ALIASES = {
    "free": Plan.FREE,
    "searchpro": Plan.SEARCH_PRO,
    "search_pro": Plan.SEARCH_PRO,
    "labpro": Plan.LAB_PRO,
    "lab_pro": Plan.LAB_PRO,
}


def parse_plan(value: str | None) -> Plan | None:
    # Profile rows store lower-case plan names; the UI uses the display casing.
    if value is None:
        return None
    return _PLAN_ALIASES.get(value.strip().lower())


def parse_role(value: str | None) -> Role:
    if value and value.strip().lower() == Role.ADMIN.value:
        return Role.ADMIN
    return Role.MEMBER


def parse_age_band(value: str | None) -> AgeBand | None:
    if value is None:
        return None
    try:
        return AgeBand(value.strip())
    except ValueError:
        return None


def ensure_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role = Role.MEMBER
    plan: Plan = Plan.FREE
    email: str | None = None
    age_band: AgeBand | None = None
    trial_plan: Plan | None = None
    trial_ends_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def effective_plan(self, now: datetime) -> Plan:
        # An active trial lifts the plan but never lowers it.
        if self.trial_plan is None or self.trial_ends_at is None:
            return self.plan
        if ensure_utc(self.trial_ends_at) <= now:
            return self.plan
        if self.trial_plan.rank > self.plan.rank:
            return self.trial_plan
        return self.plan


class _PrincipalLoading:
    def __repr__(self) -> str:
        return "PRINCIPAL_LOADING"


PRINCIPAL_LOADING = _PrincipalLoading()


@dataclass(frozen=True)
class AccessDecision:
    status: DecisionStatus
    reason: DenialReason = DenialReason.NONE
    # None means unlimited; never conflate with zero.
    remaining: int | None = None
    limit: int | None = None
    required_plan: Plan | None = None
    quota_kind: Capability | None = None

    @property
    def allowed(self) -> bool:
        return self.status is DecisionStatus.ALLOWED

    @property
    def pending(self) -> bool:
        return self.status is DecisionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "allowed": self.allowed,
            "reason": self.reason.value,
            "remaining": "unlimited" if self.remaining is None else self.remaining,
            "limit": self.limit,
            "required_plan": self.required_plan.value if self.required_plan else None,
            "quota_kind": self.quota_kind.value if self.quota_kind else None,
        }


class SightingCandidate(BaseModel):
    source: str = Field(min_length=1)
    url: str = Field(min_length=1)
    snippet: str
    score: int = Field(ge=0, le=100)
    observed_at: datetime
    title: str | None = None

    @field_validator("observed_at")
    @classmethod
    def _normalize_observed_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


@dataclass(frozen=True)
class MonitoringState:
    status: MonitoringStatus = MonitoringStatus.MONITORING
    trending_score: int = 0
    times_found: int = 0
    platforms: tuple[Platform, ...] = ()
    monitoring_started_at: datetime | None = None
    last_checked_at: datetime | None = None
    last_found_at: datetime | None = None


@dataclass(frozen=True)
class BatchOutcome:
    state: MonitoringState
    found_count: int
    accepted: int
    rejected_below_threshold: int


@dataclass(frozen=True)
class SparklinePoint:
    date: str
    value: float


@dataclass(frozen=True)
class TrendSummary:
    total_spotted: int
    source_count: int
    platform_count: int
    avg_score: float
    sparklines: dict[int, list[SparklinePoint]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_spotted": self.total_spotted,
            "source_count": self.source_count,
            "platform_count": self.platform_count,
            "avg_score": self.avg_score,
            "sparklines": {
                str(window): [{"date": p.date, "value": p.value} for p in points]
                for window, points in self.sparklines.items()
            },
        }
