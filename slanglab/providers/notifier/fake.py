from __future__ import annotations

from slanglab.core.errors import NotifierError
from slanglab.providers.notifier.base import FirstSightingNotice


class FakeCreatorNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        # Recorded notices let tests assert on who was told about which term.
        self.notices: list[FirstSightingNotice] = []
        self._fail = fail

    async def notify_first_sighting(self, notice: FirstSightingNotice) -> None:
        if self._fail:
            raise NotifierError("Fake notifier configured to fail.")
        self.notices.append(notice)
