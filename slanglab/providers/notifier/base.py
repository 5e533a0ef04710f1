from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

FIRST_SIGHTING_EVENT = "first_sighting"


@dataclass(frozen=True)
class FirstSightingNotice:
    owner_id: str
    term_id: int
    phrase: str
    # Qualifying sightings as url/source/snippet/score mappings.
    sightings: tuple[dict[str, Any], ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": FIRST_SIGHTING_EVENT,
            "user_id": self.owner_id,
            "term_id": self.term_id,
            "phrase": self.phrase,
            "sightings": [dict(item) for item in self.sightings],
        }


class CreatorNotifier(Protocol):
    # Tell a creator their tracked term was spotted in the wild for the first time.
    async def notify_first_sighting(self, notice: FirstSightingNotice) -> None:
        ...
