from __future__ import annotations

import json
from typing import Optional

import pika

from . import config


def _connect(url: Optional[str] = None) -> pika.BlockingConnection:
    params = pika.URLParameters(url or config.RABBITMQ_URL)
    # a few sane defaults
    params.heartbeat = 30
    params.blocked_connection_timeout = 30
    return pika.BlockingConnection(params)


def publish_event(
    routing_key: str,
    payload: dict,
    *,
    url: Optional[str] = None,
    exchange: Optional[str] = None,
) -> None:
    exchange = exchange or config.EVENTS_EXCHANGE
    connection = _connect(url)
    try:
        ch = connection.channel()
        ch.exchange_declare(exchange=exchange, exchange_type="topic", durable=True)
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        ch.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=2,  # persistent
            ),
        )
    finally:
        connection.close()
