from __future__ import annotations

from contextlib import asynccontextmanager
import json
from typing import AsyncIterator

import httpx

from slanglab.core.config import get_settings
from slanglab.core.errors import GeneratorConfigMissingError, GeneratorError
from slanglab.domain.types import AgeBand
from slanglab.providers.generator.base import GeneratedSlang
from slanglab.services.resilience import call_external


OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
_INTEGRATION = "generator.openai"

_SAFETY_RULES = """Safety rules (strictly enforced):
- No profanity, slurs, sexual content, harassment, or targeted insults
- No references to drugs, alcohol, violence, self-harm, or illegal activities
- No hate speech, discrimination, or harmful stereotypes
- Keep examples conversational and natural"""

_AGE_GUIDANCE = {
    AgeBand.CHILD: "The audience is 11-13 years old: keep everything school-safe and gentle.",
    AgeBand.TEEN: "The audience is 14-17 years old: keep everything school-safe.",
    AgeBand.ADULT: "The audience is adults: stay friendly and inclusive.",
}


def build_system_prompt(age_band: AgeBand | None) -> str:
    # Unknown age bands get the youngest audience's guidance.
    guidance = _AGE_GUIDANCE[age_band or AgeBand.CHILD]
    return (
        "You are SlangLab, a creative slang generator that creates safe, age-appropriate slang phrases.\n\n"
        f"{_SAFETY_RULES}\n{guidance}\n\n"
        'Return one original 1-3 word slang phrase as JSON: {"phrase": str, "meaning": str, "example": str}.'
    )


def parse_generation(content: str) -> GeneratedSlang:
    try:
        payload = json.loads(content)
        return GeneratedSlang(
            phrase=str(payload["phrase"]).strip(),
            meaning=str(payload["meaning"]).strip(),
            example=str(payload["example"]).strip(),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise GeneratorError("Slang generator returned an unexpected payload.") from exc


class OpenAISlangGenerator:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        # Injected clients belong to the caller; otherwise one client per call, closed on exit.
        if self._client is not None:
            yield self._client
            return
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            yield client

    async def generate(self, prompt: str, *, age_band: AgeBand | None = None) -> GeneratedSlang:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise GeneratorConfigMissingError("OPENAI_API_KEY is required for the OpenAI slang generator")

        payload = {
            "model": self._settings.openai_model,
            "messages": [
                {"role": "system", "content": build_system_prompt(age_band)},
                {"role": "user", "content": f"Create slang for: {prompt}"},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": 400,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            async with self._client_scope() as client:
                response = await call_external(
                    _INTEGRATION, lambda: client.post(OPENAI_CHAT_URL, json=payload, headers=headers)
                )
        except (httpx.HTTPError, TimeoutError) as exc:
            raise GeneratorError("OpenAI generation request failed.") from exc

        if response.status_code in {401, 403}:
            raise GeneratorConfigMissingError("OpenAI auth error: check OPENAI_API_KEY.")
        if response.status_code >= 400:
            error = GeneratorError(f"OpenAI error: {response.status_code}")
            setattr(error, "status_code", response.status_code)
            raise error

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GeneratorError("OpenAI returned an unexpected response shape.") from exc
        return parse_generation(content)
