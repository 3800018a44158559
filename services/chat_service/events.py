import pika
import json
import logging
import os

RABBITMQ_URL = os.getenv("RABBITMQ_URL")
EVENTS_QUEUE = os.getenv("EVENTS_QUEUE", "events")
PREVIEW_LENGTH = 140

logger = logging.getLogger(__name__)


def build_message_event(message, recipient_ids):
    return {
        "room_id": message.room_id,
        "message_id": message.id,
        "sender_id": message.sender_id,
        "recipient_ids": sorted(recipient_ids),
        "preview": (message.content or "")[:PREVIEW_LENGTH],
        "attachments": len(message.media_urls or []),
    }


def publish_event(event_type: str, data: dict):
    """Push an event onto the shared queue; never raises."""
    if not RABBITMQ_URL:
        logger.debug("RABBITMQ_URL not set, dropping %s event", event_type)
        return
    try:
        params = pika.URLParameters(RABBITMQ_URL)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=EVENTS_QUEUE,
                body=json.dumps({"type": event_type, "data": data}),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except Exception as exc:
        logger.warning("Failed to publish event %s: %s", event_type, exc)
