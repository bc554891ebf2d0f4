"""Transport tests."""

import asyncio

import pytest

from flowboard.config import FlowboardConfig, RedisConfig, TransportConfig
from flowboard.transports import InMemoryTransport, get_transport
from flowboard.transports.redis import RedisTransport


async def _next(iterator):
    return await iterator.__anext__()


@pytest.mark.asyncio
async def test_inmemory_transport_fans_out_to_every_listener():
    transport = InMemoryTransport()
    first = transport.listen()
    second = transport.listen()
    got_first = asyncio.create_task(_next(first))
    got_second = asyncio.create_task(_next(second))
    await asyncio.sleep(0)
    assert transport.listener_count == 2

    await transport.publish("wf-1", "data: {}\n\n")

    assert await asyncio.wait_for(got_first, 1) == ("wf-1", "data: {}\n\n")
    assert await asyncio.wait_for(got_second, 1) == ("wf-1", "data: {}\n\n")
    await first.aclose()
    await second.aclose()
    assert transport.listener_count == 0


def test_redis_channel_names():
    transport = RedisTransport(channel_prefix="dash")
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert transport.channel_for("wf-1") == "dash:events:wf-1"
    assert transport.topic_of("dash:events:wf-1") == "wf-1"


def test_get_transport_backends(monkeypatch):
    monkeypatch.delenv("FLOWBOARD_TRANSPORT", raising=False)
    config = FlowboardConfig()

    assert get_transport(config=config) is None
    assert isinstance(get_transport("inmemory", config=config), InMemoryTransport)

    config = FlowboardConfig(
        transport=TransportConfig(
            backend="redis", redis=RedisConfig(host="confighost", port=6380)
        )
    )
    transport = get_transport(config=config)
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380

    with pytest.raises(ValueError):
        get_transport("kafka", config=config)


def test_get_transport_env_override(monkeypatch):
    monkeypatch.setenv("FLOWBOARD_TRANSPORT", "inmemory")
    assert isinstance(get_transport(config=FlowboardConfig()), InMemoryTransport)
