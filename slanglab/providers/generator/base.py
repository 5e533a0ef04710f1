from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from slanglab.domain.types import AgeBand


@dataclass(frozen=True)
class GeneratedSlang:
    phrase: str
    meaning: str
    example: str


class SlangGenerator(Protocol):
    async def generate(self, prompt: str, *, age_band: AgeBand | None = None) -> GeneratedSlang:
        ...
