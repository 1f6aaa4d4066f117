# payflow/core/kafka_producer.py

import json
from kafka import KafkaProducer
from payflow.core.config import settings


def create_kafka_producer() -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        # Fail fast on broker connection issues during a request
        request_timeout_ms=5000,
    )
