# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import json

import httpx
import pytest

from flowmigrate.core.exceptions import TransportError
from flowmigrate.core.transport import N8nTransport


def _transport(handler, **kwargs):
    kwargs.setdefault("retry_delay_seconds", 0)
    return N8nTransport(
        "https://n8n.example.com/",
        api_key="secret",
        http_transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _workflow(wf_id, name):
    return {"id": wf_id, "name": name, "nodes": [], "connections": {}}


@pytest.mark.asyncio
async def test_list_follows_cursor():
    """All pages are fetched using nextCursor"""
    seen = []

    def handler(request):
        seen.append(request)
        if "cursor" not in request.url.params:
            return httpx.Response(200, json={"data": [_workflow(1, "A")], "nextCursor": "page2"})
        return httpx.Response(200, json={"data": [_workflow(2, "B")], "nextCursor": None})

    async with _transport(handler) as client:
        workflows = await client.list()

    assert [wf.id for wf in workflows] == ["1", "2"]
    assert seen[0].url.path == "/api/v1/workflows"
    assert seen[0].url.params["limit"] == "250"
    assert seen[1].url.params["cursor"] == "page2"
    assert seen[0].headers["X-N8N-API-KEY"] == "secret"


@pytest.mark.asyncio
async def test_create_posts_payload():
    def handler(request):
        body = json.loads(request.content)
        assert request.method == "POST"
        return httpx.Response(200, json={"id": "new-1", "name": body["name"]})

    async with _transport(handler) as client:
        created = await client.create({"name": "A", "nodes": [], "connections": {}})

    assert created["id"] == "new-1"
    assert client.stats["created"] == 1


@pytest.mark.asyncio
async def test_create_requires_name_and_nodes():
    async with _transport(lambda request: httpx.Response(200, json={})) as client:
        with pytest.raises(ValueError, match="name"):
            await client.create({"nodes": []})
        with pytest.raises(ValueError, match="nodes"):
            await client.create({"name": "A"})


@pytest.mark.asyncio
async def test_create_response_without_id():
    async with _transport(lambda request: httpx.Response(200, json={"name": "A"})) as client:
        with pytest.raises(TransportError, match="no id"):
            await client.create({"name": "A", "nodes": []})


@pytest.mark.asyncio
async def test_update_uses_put():
    methods = []

    def handler(request):
        methods.append((request.method, request.url.path))
        return httpx.Response(200, json={"id": "w1"})

    async with _transport(handler) as client:
        await client.update("w1", {"name": "A", "nodes": []})

    assert methods == [("PUT", "/api/v1/workflows/w1")]


@pytest.mark.asyncio
async def test_get_not_found_returns_none():
    async with _transport(lambda request: httpx.Response(404, json={"message": "Not Found"})) as client:
        assert await client.get("missing") is None


@pytest.mark.asyncio
async def test_get_returns_workflow():
    async with _transport(lambda request: httpx.Response(200, json=_workflow("w1", "A"))) as client:
        workflow = await client.get("w1")

    assert workflow.name == "A"


@pytest.mark.asyncio
async def test_retries_on_server_error():
    """5xx responses are retried until one succeeds"""
    responses = [httpx.Response(503), httpx.Response(200, json={"id": "w1"})]

    async with _transport(lambda request: responses.pop(0), max_retries=2) as client:
        await client.update("w1", {"name": "A", "nodes": []})

    assert client.stats["retries"] == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(500, json={"message": "boom"})

    async with _transport(handler, max_retries=2) as client:
        with pytest.raises(TransportError, match="HTTP 500") as exc:
            await client.update("w1", {"name": "A", "nodes": []})

    assert len(attempts) == 3
    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(400, json={"message": "request/body must have required property 'settings'"})

    async with _transport(handler, max_retries=3) as client:
        with pytest.raises(TransportError, match="settings") as exc:
            await client.create({"name": "A", "nodes": []})

    assert len(attempts) == 1
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_network_error_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _transport(handler, max_retries=1) as client:
        with pytest.raises(TransportError, match="connection refused"):
            await client.get("w1")

    assert client.stats["retries"] == 1


def test_requires_credentials():
    with pytest.raises(ValueError, match="api_key"):
        N8nTransport("https://n8n.example.com", api_key="")
