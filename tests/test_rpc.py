from __future__ import annotations

import pytest
import requests

from chain_divergence import rpc as rpc_module
from chain_divergence.errors import OracleUnavailable, RPCError
from chain_divergence.rpc import BlockHashOracle, RPCClient

BLOCK_HASH = "0x" + "ab" * 32


class FakeResponse:
    def __init__(self, payload=None, status_code=200, headers=None, text=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self._text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._text is not None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        pass


def ok(result, id_=1):
    return FakeResponse({"jsonrpc": "2.0", "id": id_, "result": result})


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(rpc_module.time, "sleep", sleeps.append)
    return sleeps


def make_client(*responses, retries=3, backoff=0.5):
    session = FakeSession(*responses)
    client = RPCClient("http://node-a:8545", timeout=5, retries=retries, backoff=backoff, session=session)
    return client, session


def test_call_sends_jsonrpc_body_and_returns_result():
    client, session = make_client(ok("0x10"))

    assert client.call("eth_blockNumber") == "0x10"
    sent = session.requests[0]
    assert sent["url"] == "http://node-a:8545"
    assert sent["timeout"] == 5
    assert sent["json"]["jsonrpc"] == "2.0"
    assert sent["json"]["method"] == "eth_blockNumber"
    assert sent["json"]["params"] == []


def test_request_ids_increase():
    client, session = make_client(ok("0x1"), ok("0x2"))

    client.call("eth_blockNumber")
    client.call("eth_blockNumber")

    assert [r["json"]["id"] for r in session.requests] == [1, 2]


def test_transport_errors_are_retried_with_backoff(no_sleep):
    client, session = make_client(
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
        ok("0x2a"),
    )

    assert client.block_number() == 42
    assert len(session.requests) == 3
    assert no_sleep == [0.5, 1.0]


def test_rate_limit_honours_retry_after(no_sleep):
    client, _ = make_client(
        FakeResponse(status_code=429, headers={"Retry-After": "3"}),
        ok("0x1"),
    )

    client.call("eth_blockNumber")

    assert no_sleep == [3.0]


def test_exhausted_retries_raise_rpc_error():
    client, session = make_client(
        FakeResponse(status_code=503),
        FakeResponse(status_code=503),
        retries=1,
    )

    with pytest.raises(RPCError, match="giving up after 2 attempts"):
        client.call("eth_blockNumber")
    assert len(session.requests) == 2


def test_zero_retries_makes_one_attempt():
    client, session = make_client(requests.ConnectionError("down"), retries=0)

    with pytest.raises(RPCError) as excinfo:
        client.call("eth_blockNumber")
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)
    assert len(session.requests) == 1


def test_jsonrpc_error_is_not_retried():
    client, session = make_client(
        FakeResponse({"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}),
    )

    with pytest.raises(RPCError, match=r"method not found \(code -32601\)"):
        client.call("eth_nope")
    assert len(session.requests) == 1


def test_client_error_status_is_not_retried():
    client, session = make_client(FakeResponse(status_code=401))

    with pytest.raises(RPCError, match="HTTP 401"):
        client.call("eth_blockNumber")
    assert len(session.requests) == 1


def test_non_json_body_is_rejected():
    client, _ = make_client(FakeResponse(text="<html>bad gateway</html>"))

    with pytest.raises(RPCError, match="not valid JSON"):
        client.call("eth_blockNumber")


def test_get_block_hash_queries_without_transactions():
    client, session = make_client(ok({"number": "0x64", "hash": BLOCK_HASH}))

    assert client.get_block_hash(100) == BLOCK_HASH
    assert session.requests[0]["json"]["method"] == "eth_getBlockByNumber"
    assert session.requests[0]["json"]["params"] == ["0x64", False]


def test_get_block_hash_returns_none_for_missing_block():
    client, _ = make_client(ok(None))

    assert client.get_block_hash(10**9) is None


def test_malformed_block_number():
    client, _ = make_client(ok("latest"))

    with pytest.raises(RPCError, match="malformed block number"):
        client.block_number()


def test_oracle_returns_normalised_hash():
    client, _ = make_client(ok({"hash": BLOCK_HASH.upper().replace("0X", "0x")}))

    assert BlockHashOracle(client, "A")(5) == BLOCK_HASH


def test_oracle_maps_missing_block_to_unavailable():
    client, _ = make_client(ok(None))

    with pytest.raises(OracleUnavailable) as excinfo:
        BlockHashOracle(client, "B")(7)
    assert excinfo.value.index == 7
    assert excinfo.value.side == "B"
    assert "block not found" in excinfo.value.reason


def test_oracle_maps_rpc_failure_to_unavailable():
    client, _ = make_client(requests.ConnectionError("down"), retries=0)

    with pytest.raises(OracleUnavailable) as excinfo:
        BlockHashOracle(client, "A")(3)
    assert isinstance(excinfo.value.__cause__, RPCError)


@pytest.mark.parametrize("payload", [{"hash": "0x1234"}, {"hash": 12}, {"number": "0x1"}, ["not", "a", "block"]])
def test_oracle_rejects_malformed_payloads(payload):
    client, _ = make_client(ok(payload))

    with pytest.raises(OracleUnavailable):
        BlockHashOracle(client, "A")(1)


def test_retry_after_applies_to_one_sleep_only(no_sleep):
    client, _ = make_client(
        FakeResponse(status_code=429, headers={"Retry-After": "30"}),
        FakeResponse(status_code=503),
        FakeResponse(status_code=503),
        ok("0x1"),
    )

    client.call("eth_blockNumber")

    assert no_sleep == [30.0, 1.0, 2.0]


def test_client_closes_session_as_context_manager():
    session = FakeSession()
    session.closed = False

    def close():
        session.closed = True

    session.close = close
    with RPCClient("http://node-a:8545", session=session) as client:
        assert client.session is session

    assert session.closed
