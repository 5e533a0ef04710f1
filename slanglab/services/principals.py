from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from slanglab.domain.models import Profile
from slanglab.domain.types import Plan, Principal, ensure_utc, parse_age_band, parse_plan, parse_role
from slanglab.services.usage import with_backend_timeout


logger = logging.getLogger(__name__)


def principal_from_profile(profile: Profile | None, *, user_id: str, email: str | None = None) -> Principal:
    # A missing profile row means a fresh account: Free member, no age band.
    if profile is None:
        return Principal(user_id=user_id, email=email)
    plan = parse_plan(profile.plan)
    if plan is None:
        logger.error("profile_plan_unknown user_id=%s plan=%s", user_id, profile.plan)
        plan = Plan.FREE
    return Principal(
        user_id=user_id,
        role=parse_role(profile.role),
        plan=plan,
        email=profile.email or email,
        age_band=parse_age_band(profile.age_band),
        trial_plan=parse_plan(profile.trial_plan),
        trial_ends_at=ensure_utc(profile.trial_ends_at) if profile.trial_ends_at else None,
    )


async def load_principal(
    session: AsyncSession,
    user_id: str,
    *,
    email: str | None = None,
) -> Principal:
    profile = await with_backend_timeout(session.get(Profile, user_id))
    return principal_from_profile(profile, user_id=user_id, email=email)
