"""Tests for HttpRemoteStore against a local aiohttp server."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as AiohttpTestServer

from offline_sync import (
    HttpMethod,
    HttpRemoteStore,
    QueuedOperation,
    RemoteRejectedError,
    SyncEngine,
    SyncStatus,
    TransportError,
)


def make_operation(method, endpoint, payload=None, target_id=None):
    return QueuedOperation(
        operation_id="op-1",
        target_id=target_id,
        endpoint=endpoint,
        method=HttpMethod.parse(method),
        payload=payload,
    )


@pytest.fixture
async def server():
    """Notebook API with scripted failure routes."""
    received: list[dict] = []

    async def record(request):
        body = await request.text()
        received.append(
            {
                "method": request.method,
                "path": request.path,
                "body": body,
                "authorization": request.headers.get("Authorization"),
            }
        )
        return await request.json() if body else None

    async def put_notebook(request):
        body = await record(request)
        return web.json_response({**body, "id": request.match_info["id"], "version": 2})

    async def create_notebook(request):
        body = await record(request)
        return web.json_response({**body, "id": "srv-1"}, status=201)

    async def delete_notebook(request):
        await record(request)
        return web.Response(status=204)

    async def missing(request):
        await record(request)
        return web.json_response({"error": "Notebook not found"}, status=404)

    async def invalid(request):
        await record(request)
        return web.Response(status=422, text="Title is required")

    async def status_route(request):
        await record(request)
        return web.Response(status=int(request.match_info["status"]))

    async def garbled(request):
        await record(request)
        status = int(request.query.get("status", "200"))
        return web.Response(status=status, body=b"\xff\xfe\xfa", content_type="application/json")

    async def not_json(request):
        await record(request)
        return web.Response(text="<html>saved</html>", content_type="text/html")

    async def odd_charset(request):
        await record(request)
        return web.Response(
            body=b'{"id": "n1", "title": "A"}',
            headers={"Content-Type": "application/json; charset=no-such-charset"},
        )

    async def slow(request):
        await asyncio.sleep(1)
        return web.json_response({})

    app = web.Application()
    app.router.add_put("/api/notebooks/{id}", put_notebook)
    app.router.add_post("/api/notebooks", create_notebook)
    app.router.add_delete("/api/notebooks/{id}", delete_notebook)
    app.router.add_put("/api/missing/{id}", missing)
    app.router.add_put("/api/invalid/{id}", invalid)
    app.router.add_put("/api/status/{status}", status_route)
    app.router.add_put("/api/slow/{id}", slow)
    app.router.add_put("/api/garbled/{id}", garbled)
    app.router.add_put("/api/not-json/{id}", not_json)
    app.router.add_put("/api/odd-charset/{id}", odd_charset)

    test_server = AiohttpTestServer(app)
    await test_server.start_server()
    test_server.received = received
    yield test_server
    await test_server.close()


@pytest.fixture
async def store(server):
    store = HttpRemoteStore(
        f"http://{server.host}:{server.port}/",
        timeout_s=5,
        headers={"Authorization": "Bearer token"},
    )
    yield store
    await store.close()


class TestHttpRemoteStore:
    """Outcome classification of HTTP responses."""

    async def test_put_returns_remote_entity(self, store, server):
        operation = make_operation("PUT", "/api/notebooks/n1", {"title": "A"}, target_id="n1")

        response = await store.send(operation)

        assert response.status == 200
        assert response.entity == {"title": "A", "id": "n1", "version": 2}
        assert server.received[0]["authorization"] == "Bearer token"

    async def test_post_returns_created_entity(self, store):
        response = await store.send(make_operation("POST", "/api/notebooks", {"title": "New"}))

        assert response.status == 201
        assert response.entity["id"] == "srv-1"

    async def test_delete_without_body(self, store, server):
        response = await store.send(make_operation("DELETE", "/api/notebooks/n1", target_id="n1"))

        assert response.status == 204
        assert response.entity is None
        assert server.received[0]["body"] == ""

    async def test_not_found_is_rejected(self, store):
        with pytest.raises(RemoteRejectedError) as exc_info:
            await store.send(make_operation("PUT", "/api/missing/n1", {"title": "A"}))

        assert exc_info.value.status == 404
        assert exc_info.value.reason == "Notebook not found"

    async def test_plain_text_reason(self, store):
        with pytest.raises(RemoteRejectedError) as exc_info:
            await store.send(make_operation("PUT", "/api/invalid/n1", {}))

        assert exc_info.value.status == 422
        assert exc_info.value.reason == "Title is required"

    @pytest.mark.parametrize("status", [500, 502, 503, 401, 408, 429])
    async def test_transient_statuses(self, store, status):
        with pytest.raises(TransportError) as exc_info:
            await store.send(make_operation("PUT", f"/api/status/{status}", {}))

        assert exc_info.value.status == status

    @pytest.mark.parametrize("status", [400, 403, 409])
    async def test_terminal_statuses(self, store, status):
        with pytest.raises(RemoteRejectedError):
            await store.send(make_operation("PUT", f"/api/status/{status}", {}))

    async def test_undecodable_success_body(self, store):
        """Bytes that are not valid UTF-8 still confirm the mutation."""
        response = await store.send(make_operation("PUT", "/api/garbled/n1", {"title": "A"}))

        assert response.status == 200
        assert response.entity is None

    async def test_undecodable_error_body_is_rejected(self, store):
        with pytest.raises(RemoteRejectedError) as exc_info:
            await store.send(make_operation("PUT", "/api/garbled/n1?status=400", {}))

        assert exc_info.value.status == 400
        assert "\ufffd" in exc_info.value.reason

    async def test_undecodable_server_error_is_transient(self, store):
        with pytest.raises(TransportError) as exc_info:
            await store.send(make_operation("PUT", "/api/garbled/n1?status=503", {}))

        assert exc_info.value.status == 503

    async def test_non_json_success_body(self, store):
        response = await store.send(make_operation("PUT", "/api/not-json/n1", {"title": "A"}))

        assert response.status == 200
        assert response.entity is None

    async def test_unknown_charset_falls_back_to_utf8(self, store):
        response = await store.send(make_operation("PUT", "/api/odd-charset/n1", {"title": "A"}))

        assert response.entity == {"id": "n1", "title": "A"}

    async def test_timeout_is_transient(self, server):
        store = HttpRemoteStore(f"http://{server.host}:{server.port}", timeout_s=0.1)
        try:
            with pytest.raises(TransportError) as exc_info:
                await store.send(make_operation("PUT", "/api/slow/n1", {}))
        finally:
            await store.close()

        assert exc_info.value.status is None

    async def test_unreachable_host_is_transient(self):
        store = HttpRemoteStore("http://127.0.0.1:1", timeout_s=2)
        try:
            with pytest.raises(TransportError) as exc_info:
                await store.send(make_operation("PUT", "/api/notebooks/n1", {}))
        finally:
            await store.close()

        assert exc_info.value.cause is not None


class TestUrlFor:
    def test_joins_base_url(self):
        store = HttpRemoteStore("https://notes.example.com/")
        assert store.url_for("/api/notebooks/1") == "https://notes.example.com/api/notebooks/1"
        assert store.url_for("api/notebooks/1") == "https://notes.example.com/api/notebooks/1"

    def test_absolute_endpoint(self):
        store = HttpRemoteStore("https://notes.example.com")
        assert store.url_for("https://other.example.com/x") == "https://other.example.com/x"

    def test_custom_retryable_statuses(self):
        store = HttpRemoteStore("https://notes.example.com", retryable_status_codes=(409,))
        assert store.is_transient(409) is True
        assert store.is_transient(401) is False
        assert store.is_transient(503) is True


class TestEngineOverHttp:
    """The sync engine drives a real HTTP remote store."""

    async def test_queued_put_is_replayed(self, server, store, cache, oplog):
        engine = SyncEngine(cache, oplog, store)
        await cache.upsert("n1", {"title": "Offline draft"})
        await oplog.enqueue("/api/notebooks/n1", "PUT", {"title": "Offline draft"})

        result = await engine.drain()

        assert result.synced_count == 1
        entity = await cache.get("n1")
        assert entity.sync_status == SyncStatus.SYNCED
        assert entity.snapshot == {"title": "Offline draft", "id": "n1", "version": 2}
        assert server.received[0]["path"] == "/api/notebooks/n1"

    async def test_garbled_response_does_not_abort_drain(self, server, store, cache, oplog):
        """A 2xx with an undecodable body confirms n1 and the pass carries on to n2."""
        engine = SyncEngine(cache, oplog, store)
        await cache.upsert("n1", {"title": "One"})
        await cache.upsert("n2", {"title": "Two"})
        await oplog.enqueue("/api/garbled/n1", "PUT", {"title": "One"})
        await oplog.enqueue("/api/notebooks/n2", "PUT", {"title": "Two"})

        result = await engine.drain()

        assert result.success is True
        assert result.synced_count == 2
        assert result.failed_count == 0
        assert await oplog.count() == 0
        assert [r["path"] for r in server.received] == ["/api/garbled/n1", "/api/notebooks/n2"]

        n1 = await cache.get("n1")
        assert n1.sync_status == SyncStatus.SYNCED
        assert n1.snapshot == {"title": "One"}
        assert (await cache.get("n2")).snapshot["version"] == 2
