import gzip

import httpx
import pytest

from rpclb.forwarder import Forwarder, Outcome, RequestSnapshot, classify


def make_snapshot(**overrides) -> RequestSnapshot:
    values = dict(
        method="POST",
        path="/rpc",
        headers=(
            ("host", "lb.local:8080"),
            ("content-type", "application/json"),
            ("x-api-key", "secret"),
        ),
        body=b'{"jsonrpc":"2.0","method":"eth_blockNumber","id":1}',
    )
    values.update(overrides)
    return RequestSnapshot(**values)


def test_classify() -> None:
    assert classify(429) is Outcome.RATE_LIMITED
    assert classify(200) is Outcome.USABLE
    assert classify(404) is Outcome.USABLE
    assert classify(503) is Outcome.USABLE


def test_target_concatenates_endpoint_and_path() -> None:
    snapshot = make_snapshot(path="/v1/abc")
    assert snapshot.target("https://node.example") == "https://node.example/v1/abc"
    assert make_snapshot(path="/", query="a=1").target("http://n") == "http://n/?a=1"


@pytest.mark.asyncio
async def test_forwards_method_headers_and_body_verbatim() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b'{"result":"0x10"}')

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await Forwarder(client).forward("http://node-a:8545", make_snapshot())

    assert result.outcome is Outcome.USABLE
    assert result.status_code == 200
    assert result.content == b'{"result":"0x10"}'

    (request,) = seen
    assert request.method == "POST"
    assert str(request.url) == "http://node-a:8545/rpc"
    assert request.headers["content-type"] == "application/json"
    assert request.headers["x-api-key"] == "secret"
    assert request.headers["host"] == "node-a:8545"
    assert request.content == b'{"jsonrpc":"2.0","method":"eth_blockNumber","id":1}'


@pytest.mark.asyncio
async def test_rate_limit_is_classified() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, content=b"slow down"))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.outcome is Outcome.RATE_LIMITED
    assert result.usable is False


@pytest.mark.asyncio
async def test_non_2xx_is_still_usable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404, content=b"nope"))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.usable
    assert (result.status_code, result.content) == (404, b"nope")


@pytest.mark.asyncio
async def test_transport_failure_is_classified() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.outcome is Outcome.TRANSPORT_ERROR
    assert isinstance(result.error, httpx.ConnectError)
    assert result.status_code is None


@pytest.mark.asyncio
async def test_timeout_is_a_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.outcome is Outcome.TRANSPORT_ERROR


@pytest.mark.asyncio
async def test_compressed_body_is_relayed_decoded() -> None:
    compressed = gzip.compress(b'{"result":"0x1"}')
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200,
            content=compressed,
            headers={"content-encoding": "gzip", "connection": "keep-alive"},
        )
    )
    async with httpx.AsyncClient(transport=transport) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.content == b'{"result":"0x1"}'
    assert "content-encoding" not in result.headers
    assert "content-length" not in result.headers
    assert "connection" not in result.headers


@pytest.mark.asyncio
async def test_snapshot_body_is_replayable() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(429)

    snapshot = make_snapshot()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        forwarder = Forwarder(client)
        await forwarder.forward("http://node-a", snapshot)
        await forwarder.forward("http://node-b", snapshot)

    assert bodies == [snapshot.body, snapshot.body]


@pytest.mark.asyncio
async def test_hop_by_hop_request_headers_are_not_forwarded() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    snapshot = make_snapshot(
        headers=(
            ("transfer-encoding", "chunked"),
            ("connection", "keep-alive, upgrade"),
            ("keep-alive", "timeout=5"),
            ("te", "trailers"),
            ("trailer", "x-checksum"),
            ("upgrade", "h2c"),
            ("content-type", "application/json"),
        ),
        body=b'{"id":1}',
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await Forwarder(client).forward("http://node-a", snapshot)

    (request,) = seen
    for name in ("transfer-encoding", "keep-alive", "te", "trailer", "upgrade"):
        assert name not in request.headers
    assert request.headers.get("connection") != "keep-alive, upgrade"
    assert request.headers["content-length"] == "8"
    assert request.headers["content-type"] == "application/json"
    assert request.content == b'{"id":1}'


class BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        raise httpx.ReadError("connection reset by peer")
        yield b""  # pragma: no cover


@pytest.mark.asyncio
async def test_body_read_failure_is_a_transport_failure() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, stream=BrokenStream()))
    async with httpx.AsyncClient(transport=transport) as client:
        result = await Forwarder(client).forward("http://node-a", make_snapshot())

    assert result.outcome is Outcome.TRANSPORT_ERROR
    assert isinstance(result.error, httpx.ReadError)
