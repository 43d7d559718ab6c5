import pytest
import requests

from ksynchrony.core.exceptions import NodeNotFoundError, NodeUnavailableError
from ksynchrony.core.node_client import BlockRef, KaspaRPCClient


class DummyResponse:
    def __init__(self, payload=None, status_code=200, invalid_json=False):
        self._payload = payload
        self.status_code = status_code
        self._invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if self._invalid_json:
            raise ValueError("no json")
        return self._payload


class DummySession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


def _client(*responses, **kwargs):
    session = DummySession(responses)
    return KaspaRPCClient("127.0.0.1:16210", session=session, **kwargs), session


def test_accepting_block_with_score():
    client, session = _client(
        DummyResponse({"result": {"acceptingBlockHash": "abc", "acceptingBlockBlueScore": "1234"}})
    )

    assert client.get_accepting_block("ff" * 32) == BlockRef(hash="abc", ordering_score=1234)
    call = session.calls[0]
    assert call["url"] == "https://127.0.0.1:16210"
    assert call["json"]["method"] == "getTransactionRequest"
    assert call["json"]["params"] == {"txId": "ff" * 32}
    assert call["timeout"] == 5.0


def test_unaccepted_transaction_returns_none():
    client, _ = _client(DummyResponse({"result": {"transaction": {}}}))
    assert client.get_accepting_block("ff" * 32) is None


def test_block_and_tip_reads():
    client, session = _client(
        DummyResponse({"result": {"hash": "b1", "header": {"blueScore": 77, "timestamp": 1000, "parents": ["p0"]}}}),
        DummyResponse({"result": {"blueScore": "99"}}),
    )

    block = client.get_block("b1")
    assert block.ordering_score == 77
    assert block.parent_hashes == ["p0"]
    assert client.get_virtual_tip_score() == 99
    assert session.calls[1]["json"]["method"] == "getVirtualSelectedParentBlueScoreRequest"
    assert session.calls[0]["json"]["id"] != session.calls[1]["json"]["id"]


def test_balance_defaults_to_zero():
    client, _ = _client(DummyResponse({"result": {}}))
    assert client.get_balance("kaspa:x") == 0


def test_transport_failure_is_unavailable():
    client, _ = _client(requests.ConnectionError("refused"))
    with pytest.raises(NodeUnavailableError) as exc:
        client.get_virtual_tip_score()
    assert exc.value.recoverable


def test_timeout_is_unavailable():
    client, _ = _client(requests.Timeout("slow"), timeout=0.5)
    with pytest.raises(NodeUnavailableError):
        client.get_accepting_block("ff" * 32)


def test_http_error_is_unavailable():
    client, _ = _client(DummyResponse(status_code=503))
    with pytest.raises(NodeUnavailableError):
        client.get_virtual_tip_score()


def test_invalid_json_is_unavailable():
    client, _ = _client(DummyResponse(invalid_json=True))
    with pytest.raises(NodeUnavailableError):
        client.get_virtual_tip_score()


def test_not_found_error_maps_to_not_found():
    client, _ = _client(DummyResponse({"error": {"message": "Transaction not found"}}))
    with pytest.raises(NodeNotFoundError):
        client.get_accepting_block("ff" * 32)


def test_other_rpc_error_is_unavailable():
    client, _ = _client(DummyResponse({"error": "node is syncing"}))
    with pytest.raises(NodeUnavailableError):
        client.get_virtual_tip_score()


def test_malformed_fields_are_unavailable():
    client, _ = _client(
        DummyResponse({"result": {"blueScore": "lots"}}),
        DummyResponse({"result": {"hash": "b1"}}),
        DummyResponse(["not", "a", "dict"]),
    )
    with pytest.raises(NodeUnavailableError):
        client.get_virtual_tip_score()
    with pytest.raises(NodeUnavailableError):
        client.get_block("b1")
    with pytest.raises(NodeUnavailableError):
        client.get_virtual_tip_score()


def test_api_key_header_and_close():
    client, session = _client(api_key="secret")
    assert session.headers["X-API-Key"] == "secret"
    client.close()
    assert session.closed
