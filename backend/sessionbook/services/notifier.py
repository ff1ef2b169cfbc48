"""Default notification dispatch."""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """
    Records notifications in the application log.

    Delivery channels (email, push, SMS) plug in by implementing the same
    ``notify`` method.
    """

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification %s for user %s",
            kind,
            user_id,
            extra={"user_id": user_id, "notification_kind": kind, "payload": payload},
        )
