from __future__ import annotations

from slanglab.domain.types import AgeBand
from slanglab.providers.generator.base import GeneratedSlang


class FakeSlangGenerator:
    def __init__(self, result: GeneratedSlang | None = None) -> None:
        # Deterministic output allows tests to assert on creations without external services.
        self._result = result or GeneratedSlang(
            phrase="stellar work",
            meaning="Outstanding performance or achievement",
            example="That presentation was stellar work!",
        )

    async def generate(self, prompt: str, *, age_band: AgeBand | None = None) -> GeneratedSlang:
        # Ignore input to keep output deterministic and cheap for tests.
        _ = (prompt, age_band)
        return self._result
