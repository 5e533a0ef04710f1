from __future__ import annotations

from typing import Any, Protocol


class EvidenceProvider(Protocol):
    # Raw sighting candidates for a phrase; validation happens in the caller.
    async def search(self, phrase: str) -> list[dict[str, Any]]:
        ...
