from __future__ import annotations

from slanglab.core.config import get_settings
from slanglab.core.errors import EvidenceConfigMissingError
from slanglab.providers.evidence.fake import FakeEvidenceProvider
from slanglab.providers.evidence.serpapi import SerpApiEvidenceProvider


def get_evidence_provider():
    settings = get_settings()
    provider = (settings.evidence_provider or "none").lower()

    if provider == "fake":
        return FakeEvidenceProvider()
    if provider == "serpapi":
        return SerpApiEvidenceProvider()

    raise EvidenceConfigMissingError(f"Unsupported evidence provider: {provider}")
