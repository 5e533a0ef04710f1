from __future__ import annotations


class SlangLabError(Exception):
    """Base error for SlangLab."""


class ConfigurationError(SlangLabError):
    """Missing or invalid static configuration; callers fall back to the most restrictive reading."""


class TransientBackendError(SlangLabError):
    """Counter or sighting store unavailable or timed out."""


class MalformedInputError(SlangLabError):
    """A single input item is invalid; reject it without failing its batch."""


class QuotaRaceLostError(SlangLabError):
    """The limit was reached by a concurrent action before this one committed."""


class EvidenceProviderError(SlangLabError):
    """Search/evidence provider request failure."""


class EvidenceConfigMissingError(EvidenceProviderError):
    """Evidence provider configuration missing required fields."""


class GeneratorError(SlangLabError):
    """Slang generator request failure."""


class GeneratorConfigMissingError(GeneratorError):
    """Slang generator configuration missing required fields."""


class IntegrationUnavailableError(SlangLabError):
    """External integration unavailable after retries."""


class NotifierError(SlangLabError):
    """Creator notification delivery failure."""


class NotifierConfigMissingError(NotifierError):
    """Creator notifier configuration missing required fields."""
