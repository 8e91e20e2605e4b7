from __future__ import annotations

import json

import httpx
import pytest

from lpbook.domain.exceptions import DataUnavailableError
from lpbook.infrastructure.clients.univ3_pool_rpc_client import (
    SELECTOR_DECIMALS,
    SELECTOR_FEE,
    SELECTOR_LIQUIDITY,
    SELECTOR_OBSERVE,
    SELECTOR_SLOT0,
    SELECTOR_TICK_BITMAP,
    SELECTOR_TICK_SPACING,
    SELECTOR_TOKEN0,
    SELECTOR_TOKEN1,
    SWAP_TOPIC,
    Univ3PoolRpcClient,
    Univ3PoolRpcClientSettings,
    decode_swap_log,
    encode_int,
    to_signed,
    twap_tick,
)


POOL = "0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640"
TOKEN0 = "0x" + "a0" * 20
TOKEN1 = "0x" + "c0" * 20
SQRT_PRICE_X96 = 2**96
CUMULATIVE_NOW = -5_000_000


def _hex(*values: int) -> str:
    return "0x" + "".join(encode_int(value) for value in values)


def _observe_result() -> str:
    cumulatives = [
        CUMULATIVE_NOW,
        CUMULATIVE_NOW + 100 * 300,
        CUMULATIVE_NOW + 130 * 3600,
    ]
    seconds_per_liquidity = [1, 2, 3]
    head = [64, 64 + 32 * 4]
    return _hex(*head, 3, *cumulatives, 3, *seconds_per_liquidity)


class RpcNode:
    def __init__(self, *, observe_error: bool = False, failures: int = 0):
        self.observe_error = observe_error
        self.failures = failures
        self.calls: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if self.failures > 0:
            self.failures -= 1
            return httpx.Response(502, json={"error": "bad gateway"})

        if body["method"] == "eth_getBlockByNumber":
            return self._result(body, {"number": hex(19_000_000), "timestamp": hex(1_767_225_600)})

        call = body["params"][0]
        data = call["data"]
        selector = data[:10]
        self.calls.append((call["to"], data))
        if selector == SELECTOR_SLOT0:
            return self._result(body, _hex(SQRT_PRICE_X96, -120, 7, 100, 100, 0, 1))
        if selector == SELECTOR_LIQUIDITY:
            return self._result(body, _hex(10**21))
        if selector == SELECTOR_FEE:
            return self._result(body, _hex(500))
        if selector == SELECTOR_TICK_SPACING:
            return self._result(body, _hex(10))
        if selector == SELECTOR_OBSERVE:
            if self.observe_error:
                return httpx.Response(
                    200,
                    json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "execution reverted: OLD"}},
                )
            return self._result(body, _observe_result())
        if selector == SELECTOR_TICK_BITMAP:
            index = to_signed(int(data[10:], 16))
            return self._result(body, _hex(1 << 5 if index == -1 else 0))
        if selector == SELECTOR_TOKEN0:
            return self._result(body, _hex(int(TOKEN0, 16)))
        if selector == SELECTOR_TOKEN1:
            return self._result(body, _hex(int(TOKEN1, 16)))
        if selector == SELECTOR_DECIMALS:
            return self._result(body, _hex(6 if call["to"] == TOKEN0 else 18))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "unknown"}})

    @staticmethod
    def _result(body: dict, result) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _make_client(node: RpcNode, *, max_retries: int = 1, decimals: bool = True) -> Univ3PoolRpcClient:
    return Univ3PoolRpcClient(
        Univ3PoolRpcClientSettings(
            rpc_url="https://rpc.example",
            pool_address=POOL,
            timeout_seconds=5,
            max_retries=max_retries,
            min_interval_ms=0,
            token0_decimals=6 if decimals else None,
            token1_decimals=18 if decimals else None,
        ),
        transport=httpx.MockTransport(node),
    )


def test_signed_word_decoding():
    assert to_signed(int(encode_int(-120), 16)) == -120
    assert to_signed(int(encode_int(887272), 16)) == 887272
    assert encode_int(-1) == "f" * 64


def test_twap_tick_rounds_toward_negative_infinity():
    assert twap_tick(0, 7, 2) == -4
    assert twap_tick(7, 0, 2) == 3


def test_get_snapshot_decodes_pool_state():
    client = _make_client(RpcNode())

    snapshot = client.get_snapshot()

    assert snapshot.tick == -120
    assert snapshot.sqrt_price_x96 == SQRT_PRICE_X96
    assert snapshot.liquidity == 10**21
    assert snapshot.fee_tier == 500
    assert snapshot.tick_spacing == 10
    assert snapshot.observation_cardinality == 100
    assert (snapshot.token0_decimals, snapshot.token1_decimals) == (6, 18)
    assert snapshot.twap_short_tick == -100
    assert snapshot.twap_long_tick == -130
    assert snapshot.block_number == 19_000_000
    assert snapshot.timestamp.timestamp() == 1_767_225_600


def test_observe_failure_leaves_twaps_empty():
    client = _make_client(RpcNode(observe_error=True))

    snapshot = client.get_snapshot()

    assert snapshot.twap_short_tick is None
    assert snapshot.twap_long_tick is None
    assert snapshot.tick == -120


def test_decimals_are_resolved_from_tokens_once():
    node = RpcNode()
    client = _make_client(node, decimals=False)

    first = client.get_snapshot()
    second = client.get_snapshot()

    assert (first.token0_decimals, first.token1_decimals) == (6, 18)
    assert (second.token0_decimals, second.token1_decimals) == (6, 18)
    decimals_calls = [to for to, data in node.calls if data.startswith(SELECTOR_DECIMALS)]
    assert decimals_calls == [TOKEN0, TOKEN1]


def test_bitmap_word_encodes_negative_index():
    node = RpcNode()
    client = _make_client(node)

    assert client.bitmap_word(-1) == 1 << 5
    assert client.bitmap_word(3) == 0
    assert node.calls[0][1] == SELECTOR_TICK_BITMAP + "f" * 64


def test_transient_errors_are_retried(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        "lpbook.infrastructure.clients.univ3_pool_rpc_client.time.sleep",
        lambda _seconds: None,
    )
    client = _make_client(RpcNode(failures=2), max_retries=3)

    assert client.bitmap_word(-1) == 1 << 5


def test_persistent_errors_raise_data_unavailable(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        "lpbook.infrastructure.clients.univ3_pool_rpc_client.time.sleep",
        lambda _seconds: None,
    )
    client = _make_client(RpcNode(failures=10), max_retries=2)

    with pytest.raises(DataUnavailableError):
        client.bitmap_word(0)


def _swap_log(block: int, tick: int, *, amount0: int = -5 * 10**6, removed: bool = False) -> dict:
    return {
        "address": POOL,
        "topics": [SWAP_TOPIC],
        "data": _hex(amount0, 2 * 10**18, SQRT_PRICE_X96, 10**21, tick),
        "blockNumber": hex(block),
        "transactionHash": "0x" + f"{block:064x}",
        "logIndex": hex(3),
        "removed": removed,
    }


class LogNode:
    def __init__(self, heads: list[int], logs: list[dict] | None = None):
        self.heads = list(heads)
        self.logs = logs or []
        self.filters: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["method"] == "eth_blockNumber":
            return RpcNode._result(body, hex(self.heads.pop(0)))
        if body["method"] == "eth_getLogs":
            self.filters.append(body["params"][0])
            return RpcNode._result(body, self.logs)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"message": "unknown"}})


def test_decode_swap_log_reads_signed_fields():
    event = decode_swap_log(_swap_log(19_000_010, -201_234))

    assert event.block_number == 19_000_010
    assert event.amount0 == -5 * 10**6
    assert event.amount1 == 2 * 10**18
    assert event.sqrt_price_x96 == SQRT_PRICE_X96
    assert event.liquidity == 10**21
    assert event.tick == -201_234
    assert event.log_index == 3


def test_decode_swap_log_rejects_short_data():
    with pytest.raises(ValueError):
        decode_swap_log({"data": _hex(1, 2), "blockNumber": hex(1)})


def test_first_swap_poll_only_sets_the_cursor():
    node = LogNode([100], [_swap_log(100, -10)])
    client = _make_client(node)

    assert client.poll_swaps() == []
    assert node.filters == []


def test_swap_poll_returns_logs_since_previous_head():
    node = LogNode([100, 105], [_swap_log(103, -10), _swap_log(104, -20, removed=True), _swap_log(105, 30)])
    client = _make_client(node)

    client.poll_swaps()
    events = client.poll_swaps()

    assert [event.tick for event in events] == [-10, 30]
    assert node.filters == [
        {"address": POOL, "topics": [SWAP_TOPIC], "fromBlock": hex(101), "toBlock": hex(105)}
    ]


def test_swap_poll_without_new_blocks_skips_get_logs():
    node = LogNode([100, 100])
    client = _make_client(node)

    client.poll_swaps()
    assert client.poll_swaps() == []
    assert node.filters == []


def test_swap_poll_caps_the_block_window():
    node = LogNode([100, 10_000])
    client = Univ3PoolRpcClient(
        Univ3PoolRpcClientSettings(
            rpc_url="https://rpc.example",
            pool_address=POOL,
            timeout_seconds=5,
            max_retries=1,
            min_interval_ms=0,
            max_log_blocks=50,
        ),
        transport=httpx.MockTransport(node),
    )

    client.poll_swaps()
    client.poll_swaps()

    assert node.filters[0]["fromBlock"] == hex(9_951)
    assert node.filters[0]["toBlock"] == hex(10_000)


def test_malformed_swap_log_is_skipped():
    broken = _swap_log(101, 0)
    broken["data"] = "0x" + encode_int(1)
    node = LogNode([100, 101], [broken, _swap_log(101, 7)])
    client = _make_client(node)

    client.poll_swaps()

    assert [event.tick for event in client.poll_swaps()] == [7]


def test_non_list_logs_keep_the_cursor():
    node = LogNode([100, 105, 106])
    client = _make_client(node)
    client.poll_swaps()
    node.logs = {"unexpected": True}

    with pytest.raises(DataUnavailableError):
        client.poll_swaps()

    node.logs = []
    client.poll_swaps()
    assert node.filters[-1]["fromBlock"] == hex(101)
