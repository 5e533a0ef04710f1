from __future__ import annotations

import asyncio

from slanglab.domain.models import SourceRule
from slanglab.persistence.db import SessionLocal
from slanglab.services.sources import publish_source_rules_changed


# UrbanDictionary and TikTok are always queried; the rest compete on quality.
DEFAULT_SOURCE_RULES = (
    ("UrbanDictionary", "https://www.urbandictionary.com", True, 80),
    ("TikTok", "https://www.tiktok.com", True, 85),
    ("Reddit", "https://www.reddit.com", False, 75),
    ("Twitter", "https://x.com", False, 70),
    ("YouTube", "https://www.youtube.com", False, 65),
    ("Instagram", "https://www.instagram.com", False, 60),
)


async def seed() -> None:
    created = 0
    async with SessionLocal() as session:
        for name, base_url, is_required, quality_score in DEFAULT_SOURCE_RULES:
            if await session.get(SourceRule, name) is not None:
                continue
            session.add(
                SourceRule(
                    name=name,
                    base_url=base_url,
                    enabled=True,
                    is_required=is_required,
                    quality_score=quality_score,
                )
            )
            created += 1
        await session.commit()
    if created:
        await publish_source_rules_changed()
    print(f"seeded_source_rules={created}")


if __name__ == "__main__":
    asyncio.run(seed())
