# payflow/services/notifications.py
"""
Transactional notification collaborator.

Publishes a message event to Kafka; the notification consumers own
templates and delivery. A failed publish is logged and reported, never
raised.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from kafka.errors import KafkaError

from payflow.core.config import settings
from payflow.core.kafka_producer import create_kafka_producer
from payflow.core.logging import payment_logger


class NotificationService:
    def __init__(
        self,
        producer_factory: Callable = create_kafka_producer,
        topic: Optional[str] = None,
        logger: logging.Logger = payment_logger,
    ):
        self._producer_factory = producer_factory
        self._producer = None
        self.topic = topic or settings.NOTIFICATION_TOPIC
        self.logger = logger

    def _get_producer(self):
        if self._producer is None:
            self._producer = self._producer_factory()
        return self._producer

    def send_transactional_message(
        self,
        event_type: str,
        recipient_user_ids: List[str],
        template_metadata: Dict[str, Any],
    ) -> bool:
        message = {
            "eventType": event_type,
            "recipientUserIds": recipient_user_ids,
            "templateMetadata": template_metadata,
        }
        try:
            self._get_producer().send(self.topic, value=message)
        except KafkaError as e:
            self.logger.error(
                f"Failed to publish {event_type} notification for {recipient_user_ids}: {e}"
            )
            return False

        self.logger.info(f"Published {event_type} notification for {recipient_user_ids}")
        return True

    def close(self) -> None:
        """Flush and close the producer, if a send ever opened one."""
        if self._producer is None:
            return
        try:
            self._producer.flush()
            self._producer.close()
        except KafkaError as e:
            self.logger.error(f"Failed to close Kafka producer: {e}")
        finally:
            self._producer = None


_notifier: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _notifier
    if _notifier is None:
        _notifier = NotificationService()
    return _notifier
