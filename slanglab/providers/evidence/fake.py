from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class FakeEvidenceProvider:
    def __init__(
        self,
        results: dict[str, list[dict[str, Any]]] | None = None,
        *,
        observed_at: datetime | None = None,
    ) -> None:
        # Deterministic candidates allow tests to assert on monitoring outcomes without network calls.
        self._results = {key.lower(): value for key, value in (results or {}).items()}
        self._observed_at = observed_at or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.calls: list[str] = []

    def _default_results(self, phrase: str) -> list[dict[str, Any]]:
        observed = self._observed_at.isoformat()
        return [
            {
                "source": "tiktok.com",
                "url": f"https://www.tiktok.com/tag/{phrase.replace(' ', '')}",
                "title": f"#{phrase}",
                "snippet": f"no cap this fit is {phrase} fr",
                "score": 90,
                "observed_at": observed,
            },
            {
                "source": "reddit.com",
                "url": f"https://www.reddit.com/r/slang/search?q={phrase.replace(' ', '+')}",
                "title": f"Anyone else saying {phrase}?",
                "snippet": f"my little brother keeps saying {phrase} at dinner",
                "score": 75,
                "observed_at": observed,
            },
            {
                "source": "urbandictionary.com",
                "url": f"https://www.urbandictionary.com/define.php?term={phrase.replace(' ', '%20')}",
                "title": f"{phrase} - Urban Dictionary",
                "snippet": f"{phrase}: definition and meaning",
                "score": 50,
                "observed_at": observed,
            },
        ]

    async def search(self, phrase: str) -> list[dict[str, Any]]:
        self.calls.append(phrase)
        configured = self._results.get(phrase.lower())
        if configured is not None:
            return [dict(item) for item in configured]
        return self._default_results(phrase)
