import json
import logging

import pika

EXCHANGE = "ums_events"

logger = logging.getLogger(__name__)

def publish_event(rabbitmq_url: str, routing_key: str, event: dict):
    """
    Best-effort publish of a domain event on the topic exchange.
    Settlement state is already committed when this runs, so a broker
    outage is logged and never fails the request.
    """
    if not rabbitmq_url:
        logger.debug("RABBITMQ_URL not set, dropping event %s", routing_key)
        return
    connection = None
    try:
        params = pika.URLParameters(rabbitmq_url)
        connection = pika.BlockingConnection(params)
        channel = connection.channel()
        channel.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
        body = json.dumps(event, default=str)
        channel.basic_publish(
            exchange=EXCHANGE,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(content_type="application/json", delivery_mode=2),
        )
        logger.info("Published %s on %s", event.get("type"), routing_key)
    except Exception:
        logger.exception("Error publishing event %s", routing_key)
    finally:
        if connection is not None and connection.is_open:
            connection.close()
