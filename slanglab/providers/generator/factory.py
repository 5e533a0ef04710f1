from __future__ import annotations

from slanglab.core.config import get_settings
from slanglab.core.errors import GeneratorConfigMissingError
from slanglab.providers.generator.fake import FakeSlangGenerator
from slanglab.providers.generator.openai_generator import OpenAISlangGenerator


def get_slang_generator():
    settings = get_settings()
    provider = (settings.generator_provider or "none").lower()

    if provider == "fake":
        return FakeSlangGenerator()
    if provider == "openai":
        return OpenAISlangGenerator()

    raise GeneratorConfigMissingError(f"Unsupported slang generator: {provider}")
