from __future__ import annotations

import logging

from slanglab.providers.notifier.base import FirstSightingNotice


logger = logging.getLogger(__name__)


class LogCreatorNotifier:
    # Default delivery until a webhook receiver is configured.
    async def notify_first_sighting(self, notice: FirstSightingNotice) -> None:
        logger.info(
            "creator_first_sighting owner_id=%s term_id=%s phrase=%s sightings=%s",
            notice.owner_id,
            notice.term_id,
            notice.phrase,
            len(notice.sightings),
        )
