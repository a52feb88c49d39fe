# negotiation_service/core/kafka_producer.py

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from kafka import KafkaProducer

from negotiation_service.core.config import settings

logger = logging.getLogger(__name__)


def get_kafka_producer():
    """
    FastAPI dependency to create and yield a Kafka producer.
    Ensures the producer is properly closed after the request.
    Yields None when domain events are disabled.
    """
    if not settings.KAFKA_ENABLED:
        yield None
        return

    producer = KafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        request_timeout_ms=5000,
    )
    try:
        yield producer
    finally:
        producer.flush()  # Ensure all buffered messages are sent
        producer.close()


def emit_negotiation_event(
    producer: Optional[KafkaProducer],
    event_type: str,
    negotiation,
    metadata: Optional[dict] = None,
) -> None:
    """Publish a negotiation domain event. Failures are logged, never raised."""
    if producer is None:
        logger.debug(f"Kafka disabled, skipping {event_type} for {negotiation.id}")
        return

    event_data = {
        "event_type": event_type,
        "negotiation_id": negotiation.id,
        "bid_id": negotiation.bid_id,
        "rfq_id": negotiation.rfq_id,
        "status": negotiation.status,
        "purchase_order_id": negotiation.purchase_order_id,
        "metadata": metadata or {},
        "timestamp": str(datetime.now(timezone.utc)),
    }
    try:
        producer.send(settings.NEGOTIATION_EVENTS_TOPIC, value=event_data)
        logger.info(f"Emitted Kafka event: {event_type} for negotiation {negotiation.id}")
    except Exception as e:
        logger.error(f"Failed to emit Kafka event {event_type}: {e}")
