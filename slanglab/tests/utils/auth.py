from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from slanglab.domain.models import Profile
from slanglab.persistence.db import SessionLocal
from slanglab.services.auth import issue_token


async def create_test_profile(
    *,
    plan: str = "free",
    role: str = "member",
    age_band: str | None = "18+",
    trial_plan: str | None = None,
    trial_ends_at: datetime | None = None,
) -> tuple[str, dict[str, str]]:
    # Provision a profile plus a signed bearer token for API tests.
    user_id = f"user-{uuid4().hex}"
    async with SessionLocal() as session:
        session.add(
            Profile(
                user_id=user_id,
                email=f"{user_id}@example.com",
                role=role,
                plan=plan,
                age_band=age_band,
                trial_plan=trial_plan,
                trial_ends_at=trial_ends_at,
            )
        )
        await session.commit()
    token = issue_token(user_id, email=f"{user_id}@example.com")
    return user_id, {"Authorization": f"Bearer {token}"}
