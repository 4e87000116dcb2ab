import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

from confluent_kafka import KafkaException, Producer
from django.conf import settings

logger = logging.getLogger(__name__)

CAMPAIGN_STARTED = "campaign_started"
CAMPAIGN_COMPLETED = "campaign_completed"
REWARD_AWARDED = "reward_awarded"


@dataclass
class Notification:
    template: str
    user_id: str | None = None
    campaign_id: int | None = None
    context: dict[str, Any] = field(default_factory=dict)


_NOTIFICATION_QUEUE: deque[str] = deque()


class LocalNotificationQueue:
    def notify(self, notification: Notification) -> None:
        _NOTIFICATION_QUEUE.append(json.dumps(asdict(notification), default=str))

    def drain(self, batch_size: int = 100) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        while _NOTIFICATION_QUEUE and len(rows) < batch_size:
            rows.append(json.loads(_NOTIFICATION_QUEUE.popleft()))
        return rows


class KafkaNotificationPublisher:
    def __init__(self):
        self._topic = settings.KAFKA_TOPIC_NOTIFICATIONS
        self._producer = Producer({"bootstrap.servers": settings.KAFKA_BOOTSTRAP_SERVERS})

    def notify(self, notification: Notification) -> None:
        payload = json.dumps(asdict(notification), default=str)
        key = notification.user_id or str(notification.campaign_id or "")
        self._producer.produce(
            self._topic,
            payload.encode("utf-8"),
            key=key.encode("utf-8"),
        )
        self._producer.flush(5)


def get_notifier() -> LocalNotificationQueue | KafkaNotificationPublisher:
    if settings.KAFKA_BOOTSTRAP_SERVERS:
        try:
            return KafkaNotificationPublisher()
        except KafkaException:
            logger.warning("Kafka unavailable, notifications go to the local queue", exc_info=True)
            return LocalNotificationQueue()
    return LocalNotificationQueue()


def notify_safely(notifier, notification: Notification) -> bool:
    """Fire-and-forget delivery. Failures are logged, never raised."""
    if notifier is None:
        return False
    try:
        notifier.notify(notification)
    except Exception:
        logger.warning(
            "Notification %s for campaign=%s user=%s was not delivered",
            notification.template,
            notification.campaign_id,
            notification.user_id,
            exc_info=True,
        )
        return False
    return True
