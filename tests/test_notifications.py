"""
Tests for the Kafka-backed notification service.
"""

from unittest.mock import MagicMock, patch

from kafka.errors import KafkaError, NoBrokersAvailable

from payflow.api.deps import get_notifier
from payflow.services.notifications import NotificationService


class TestNotificationService:
    def setup_method(self):
        self.producer = MagicMock()
        self.service = NotificationService(
            producer_factory=lambda: self.producer, topic="payments.notifications", logger=MagicMock()
        )

    def test_publishes_message(self):
        sent = self.service.send_transactional_message(
            "PAYMENT_INITIATED", ["usr_1"], {"transactionRef": "TRX-1"}
        )

        assert sent is True
        topic, = self.producer.send.call_args.args
        assert topic == "payments.notifications"
        assert self.producer.send.call_args.kwargs["value"] == {
            "eventType": "PAYMENT_INITIATED",
            "recipientUserIds": ["usr_1"],
            "templateMetadata": {"transactionRef": "TRX-1"},
        }

    def test_producer_is_created_once(self):
        factory = MagicMock(return_value=self.producer)
        service = NotificationService(producer_factory=factory, logger=MagicMock())

        service.send_transactional_message("A", ["usr_1"], {})
        service.send_transactional_message("B", ["usr_1"], {})

        factory.assert_called_once()

    def test_kafka_failure_is_logged_not_raised(self):
        """A broker outage never undoes payment state."""
        self.producer.send.side_effect = KafkaError("broker unavailable")

        sent = self.service.send_transactional_message(
            "ELECTRICITY_TOKEN_ISSUED", ["usr_1"], {"electricityToken": "TOKEN-0123456789"}
        )

        assert sent is False
        self.service.logger.error.assert_called_once()

    def test_producer_is_not_opened_until_first_send(self):
        factory = MagicMock(side_effect=NoBrokersAvailable())
        service = NotificationService(producer_factory=factory, logger=MagicMock())

        service.close()

        factory.assert_not_called()

    def test_unreachable_broker_is_reported(self):
        factory = MagicMock(side_effect=NoBrokersAvailable())
        service = NotificationService(producer_factory=factory, logger=MagicMock())

        assert service.send_transactional_message("PAYMENT_CANCELLED", ["usr_1"], {}) is False

    def test_close_flushes_open_producer(self):
        self.service.send_transactional_message("A", ["usr_1"], {})

        self.service.close()

        self.producer.flush.assert_called_once()
        self.producer.close.assert_called_once()


class TestNotifierDependency:
    def test_notifier_is_closed_after_request(self):
        with patch("payflow.api.deps.NotificationService") as mock_cls:
            dependency = get_notifier()
            notifier = next(dependency)
            dependency.close()

        assert notifier is mock_cls.return_value
        notifier.close.assert_called_once()
