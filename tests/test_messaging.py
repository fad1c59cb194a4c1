import json
import logging

import pika
import pytest
from conftest import create_product

from storefront import config, messaging


class FakeChannel:
    def __init__(self):
        self.declared = []
        self.published = []

    def exchange_declare(self, **kwargs):
        self.declared.append(kwargs)

    def basic_publish(self, **kwargs):
        self.published.append(kwargs)


class FakeConnection:
    def __init__(self, params):
        self.params = params
        self.chan = FakeChannel()
        self.closed = False

    def channel(self):
        return self.chan

    def close(self):
        self.closed = True


@pytest.fixture
def broker(monkeypatch):
    connections = []

    def connect(params):
        conn = FakeConnection(params)
        connections.append(conn)
        return conn

    monkeypatch.setattr(pika, "BlockingConnection", connect)
    return connections


def test_emit_is_a_no_op_when_disabled(broker):
    messaging.emit("order.created", order_id="1")
    assert broker == []


def test_emit_publishes_persistent_json(broker, monkeypatch):
    monkeypatch.setattr(config, "EVENTS_ENABLED", True)

    messaging.emit("order.paid", order_id="42", amount="10.00")

    (conn,) = broker
    assert conn.closed
    assert conn.chan.declared == [{"exchange": config.EVENTS_EXCHANGE, "exchange_type": "topic", "durable": True}]
    (message,) = conn.chan.published
    assert message["routing_key"] == "order.paid"
    assert message["properties"].delivery_mode == 2
    body = json.loads(message["body"])
    assert body["event"] == "order.paid"
    assert body["order_id"] == "42"
    assert body["occurred_at"].endswith("Z")


def test_broker_failure_is_logged_not_raised(monkeypatch, caplog):
    monkeypatch.setattr(config, "EVENTS_ENABLED", True)

    def unreachable(params):
        raise pika.exceptions.AMQPConnectionError("connection refused")

    monkeypatch.setattr(pika, "BlockingConnection", unreachable)

    with caplog.at_level(logging.ERROR, logger="storefront.messaging"):
        messaging.emit("order.cancelled", order_id="7")

    assert "Failed to publish order.cancelled event" in caplog.text


def test_placing_an_order_emits_after_commit(client, alice, broker, monkeypatch):
    monkeypatch.setattr(config, "EVENTS_ENABLED", True)
    product = create_product(client, stock=5)

    resp = client.post(
        "/orders",
        json={"items": [{"product_id": product["id"], "quantity": 2}]},
        headers=alice["headers"],
    )

    assert resp.status_code == 201
    (conn,) = broker
    body = json.loads(conn.chan.published[0]["body"])
    assert body["event"] == "order.created"
    assert body["order_id"] == resp.json()["id"]
    assert body["items"] == [{"product_id": product["id"], "quantity": 2}]


def test_order_survives_broker_outage(client, alice, monkeypatch):
    monkeypatch.setattr(config, "EVENTS_ENABLED", True)

    def unreachable(params):
        raise pika.exceptions.AMQPConnectionError("connection refused")

    monkeypatch.setattr(pika, "BlockingConnection", unreachable)
    product = create_product(client, stock=5)

    resp = client.post(
        "/orders",
        json={"items": [{"product_id": product["id"], "quantity": 1}]},
        headers=alice["headers"],
    )

    assert resp.status_code == 201
    assert client.get("/orders/me", headers=alice["headers"]).json()["total"] == 1
