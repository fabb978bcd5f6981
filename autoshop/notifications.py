from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

from . import config
from .messaging import publish_event

logger = logging.getLogger(__name__)

ORDER_COMPLETED = "order.completed"
ORDER_EXPIRED = "order.expired"
ORDER_PAID_ALERT = "order.paid"
ORDER_SHORTFALL_ALERT = "order.shortfall"


class Notifier:
    """Outbound message sink. The chat bridge owns the transport and the wording."""

    def notify(self, recipient: int, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class RabbitNotifier(Notifier):
    """Publishes every notification as ``notify.<event>`` on the events exchange."""

    def __init__(self, url: Optional[str] = None, exchange: Optional[str] = None) -> None:
        self.url = url or config.RABBITMQ_URL
        self.exchange = exchange or config.EVENTS_EXCHANGE

    def notify(self, recipient: int, event: str, payload: Dict[str, Any]) -> None:
        body = {
            "event": event,
            "occurred_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "recipient": recipient,
            **payload,
        }
        publish_event(f"notify.{event}", body, url=self.url, exchange=self.exchange)


class DisabledNotifier(Notifier):
    """Used when NOTIFICATIONS_ENABLED is off; drops messages after logging them."""

    def notify(self, recipient: int, event: str, payload: Dict[str, Any]) -> None:
        logger.info("notifications disabled, dropping %s for %s", event, recipient)
