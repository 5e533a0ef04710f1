from __future__ import annotations

from slanglab.core.config import get_settings
from slanglab.core.errors import NotifierConfigMissingError
from slanglab.providers.notifier.fake import FakeCreatorNotifier
from slanglab.providers.notifier.log_notifier import LogCreatorNotifier
from slanglab.providers.notifier.webhook import WebhookCreatorNotifier


def get_creator_notifier():
    settings = get_settings()
    provider = (settings.notifier_provider or "none").lower()

    if provider == "fake":
        return FakeCreatorNotifier()
    if provider == "log":
        return LogCreatorNotifier()
    if provider == "webhook":
        return WebhookCreatorNotifier()

    raise NotifierConfigMissingError(f"Unsupported creator notifier: {provider}")
