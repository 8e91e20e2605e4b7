from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import itertools
import logging
from threading import Lock
import time

import httpx

from lpbook.domain.entities.market import MarketSnapshot, SwapEvent
from lpbook.domain.exceptions import DataUnavailableError


logger = logging.getLogger(__name__)


SELECTOR_SLOT0 = "0x3850c7bd"
SELECTOR_LIQUIDITY = "0x1a686502"
SELECTOR_FEE = "0xddca3f43"
SELECTOR_TICK_SPACING = "0xd0c93a7c"
SELECTOR_TICK_BITMAP = "0x5339c296"
SELECTOR_OBSERVE = "0x883bdbfd"
SELECTOR_TOKEN0 = "0x0dfe1681"
SELECTOR_TOKEN1 = "0xd21220a7"
SELECTOR_DECIMALS = "0x313ce567"

# keccak256("Swap(address,address,int256,int256,uint160,uint128,int24)")
SWAP_TOPIC = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"

WORD_HEX_CHARS = 64


class RpcResponseError(RuntimeError):
    pass


@dataclass(frozen=True)
class Univ3PoolRpcClientSettings:
    rpc_url: str
    pool_address: str
    timeout_seconds: float
    max_retries: int
    min_interval_ms: int
    twap_short_seconds: int = 300
    twap_long_seconds: int = 3600
    token0_decimals: int | None = None
    token1_decimals: int | None = None
    max_log_blocks: int = 2000


def encode_int(value: int) -> str:
    """ABI-encode a signed or unsigned integer as one 32-byte word."""
    return f"{value % (1 << 256):064x}"


def decode_words(data: str) -> list[int]:
    body = data[2:] if data.startswith("0x") else data
    if len(body) % WORD_HEX_CHARS != 0:
        raise ValueError(f"ABI payload is not word aligned (len={len(body)}).")
    return [
        int(body[offset : offset + WORD_HEX_CHARS], 16)
        for offset in range(0, len(body), WORD_HEX_CHARS)
    ]


def to_signed(word: int, bits: int = 256) -> int:
    value = word & ((1 << bits) - 1)
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def decode_int_array(words: list[int], offset_word: int) -> list[int]:
    start = offset_word // 32
    length = words[start]
    return [to_signed(word) for word in words[start + 1 : start + 1 + length]]


def twap_tick(tick_cumulative_now: int, tick_cumulative_then: int, window_seconds: int) -> int:
    """Arithmetic mean tick over the window, rounded toward negative infinity."""
    return (tick_cumulative_now - tick_cumulative_then) // window_seconds


def decode_swap_log(log: dict) -> SwapEvent:
    """Decode the non-indexed Swap fields: amount0, amount1, sqrtPriceX96, liquidity, tick."""
    words = decode_words(log["data"])
    if len(words) < 5:
        raise ValueError("Swap log data is shorter than five words.")
    log_index = log.get("logIndex")
    return SwapEvent(
        block_number=int(log["blockNumber"], 16),
        transaction_hash=log.get("transactionHash"),
        log_index=int(log_index, 16) if log_index else None,
        amount0=to_signed(words[0]),
        amount1=to_signed(words[1]),
        sqrt_price_x96=words[2],
        liquidity=words[3],
        tick=to_signed(words[4]),
    )


class Univ3PoolRpcClient:
    def __init__(
        self,
        settings: Univ3PoolRpcClientSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._lock = Lock()
        self._last_request_at = 0.0
        self._ids = itertools.count(1)
        self._decimals: tuple[int, int] | None = None
        self._swap_cursor: int | None = None
        if settings.token0_decimals is not None and settings.token1_decimals is not None:
            self._decimals = (settings.token0_decimals, settings.token1_decimals)

    def get_snapshot(self) -> MarketSnapshot:
        slot0 = self._call_words(SELECTOR_SLOT0)
        if len(slot0) < 5:
            raise DataUnavailableError("slot0 returned a short payload.")
        liquidity = self._call_words(SELECTOR_LIQUIDITY)[0]
        fee = self._call_words(SELECTOR_FEE)[0]
        tick_spacing = to_signed(self._call_words(SELECTOR_TICK_SPACING)[0])
        token0_decimals, token1_decimals = self._resolve_decimals()
        block_number, timestamp = self._latest_block()
        twap_short, twap_long = self._twap_ticks()

        snapshot = MarketSnapshot(
            timestamp=timestamp,
            tick=to_signed(slot0[1]),
            sqrt_price_x96=slot0[0],
            liquidity=liquidity,
            fee_tier=fee,
            tick_spacing=tick_spacing,
            token0_decimals=token0_decimals,
            token1_decimals=token1_decimals,
            twap_short_tick=twap_short,
            twap_long_tick=twap_long,
            block_number=block_number,
            observation_cardinality=slot0[3],
        )
        logger.info(
            "univ3_pool_rpc_client: snapshot pool=%s block=%s tick=%s twap_short=%s twap_long=%s",
            self._settings.pool_address,
            block_number,
            snapshot.tick,
            twap_short,
            twap_long,
        )
        return snapshot

    def bitmap_word(self, index: int) -> int:
        return self._call_words(SELECTOR_TICK_BITMAP + encode_int(index))[0]

    def poll_swaps(self) -> list[SwapEvent]:
        """Swap logs mined since the previous poll.

        The first call only records the current block. At most ``max_log_blocks`` are
        requested per poll; older blocks are skipped when the poller falls behind.
        """
        latest = _hex_quantity(self._rpc("eth_blockNumber", []))
        if self._swap_cursor is None or latest <= self._swap_cursor:
            self._swap_cursor = max(latest, self._swap_cursor or 0)
            return []

        from_block = max(self._swap_cursor + 1, latest - max(1, self._settings.max_log_blocks) + 1)
        logs = self._rpc(
            "eth_getLogs",
            [
                {
                    "address": self._settings.pool_address,
                    "topics": [SWAP_TOPIC],
                    "fromBlock": hex(from_block),
                    "toBlock": hex(latest),
                }
            ],
        )
        if not isinstance(logs, list):
            raise DataUnavailableError("eth_getLogs returned a non-list result.")
        self._swap_cursor = latest

        events = []
        for log in logs:
            if log.get("removed"):
                continue
            try:
                events.append(decode_swap_log(log))
            except (KeyError, TypeError, ValueError, IndexError) as exc:
                logger.warning(
                    "univ3_pool_rpc_client: swap_log_skipped tx=%s error=%s",
                    log.get("transactionHash"),
                    exc,
                )
        if events:
            logger.info(
                "univ3_pool_rpc_client: swaps pool=%s from_block=%s to_block=%s count=%s last_tick=%s",
                self._settings.pool_address,
                from_block,
                latest,
                len(events),
                events[-1].tick,
            )
        return events

    def _twap_ticks(self) -> tuple[int | None, int | None]:
        short = self._settings.twap_short_seconds
        long = self._settings.twap_long_seconds
        seconds_agos = [0, short, long]
        data = (
            SELECTOR_OBSERVE
            + encode_int(32)
            + encode_int(len(seconds_agos))
            + "".join(encode_int(value) for value in seconds_agos)
        )
        try:
            words = decode_words(self._eth_call(data, attempts=1))
            tick_cumulatives = decode_int_array(words, words[0])
        except (DataUnavailableError, ValueError, IndexError) as exc:
            logger.warning(
                "univ3_pool_rpc_client: observe_unavailable pool=%s error=%s",
                self._settings.pool_address,
                exc,
            )
            return None, None
        if len(tick_cumulatives) != len(seconds_agos):
            return None, None

        now, at_short, at_long = tick_cumulatives
        return twap_tick(now, at_short, short), twap_tick(now, at_long, long)

    def _resolve_decimals(self) -> tuple[int, int]:
        if self._decimals is not None:
            return self._decimals
        token0 = _word_to_address(self._call_words(SELECTOR_TOKEN0)[0])
        token1 = _word_to_address(self._call_words(SELECTOR_TOKEN1)[0])
        decimals0 = self._call_words(SELECTOR_DECIMALS, to=token0)[0]
        decimals1 = self._call_words(SELECTOR_DECIMALS, to=token1)[0]
        self._decimals = (decimals0, decimals1)
        logger.info(
            "univ3_pool_rpc_client: decimals_resolved token0=%s decimals0=%s token1=%s decimals1=%s",
            token0,
            decimals0,
            token1,
            decimals1,
        )
        return self._decimals

    def _latest_block(self) -> tuple[int | None, datetime]:
        try:
            block = self._rpc("eth_getBlockByNumber", ["latest", False])
        except DataUnavailableError as exc:
            logger.warning("univ3_pool_rpc_client: block_unavailable error=%s", exc)
            return None, datetime.now(timezone.utc)
        if not isinstance(block, dict):
            return None, datetime.now(timezone.utc)
        number = int(block["number"], 16) if block.get("number") else None
        if block.get("timestamp"):
            return number, datetime.fromtimestamp(int(block["timestamp"], 16), tz=timezone.utc)
        return number, datetime.now(timezone.utc)

    def _call_words(self, data: str, *, to: str | None = None) -> list[int]:
        try:
            words = decode_words(self._eth_call(data, to=to))
        except ValueError as exc:
            raise DataUnavailableError(f"Malformed eth_call result: {exc}") from exc
        if not words:
            raise DataUnavailableError(f"Empty eth_call result for {data[:10]}.")
        return words

    def _eth_call(self, data: str, *, to: str | None = None, attempts: int | None = None) -> str:
        call = {"to": to or self._settings.pool_address, "data": data}
        result = self._rpc("eth_call", [call, "latest"], attempts=attempts)
        if not isinstance(result, str):
            raise DataUnavailableError("eth_call returned a non-hex result.")
        return result

    def _rpc(self, method: str, params: list, *, attempts: int | None = None):
        attempts = max(1, attempts if attempts is not None else self._settings.max_retries)
        delay = 0.25
        last_exc: Exception | None = None

        for attempt in range(1, attempts + 1):
            self._respect_rate_limit()
            try:
                with httpx.Client(
                    timeout=self._settings.timeout_seconds,
                    transport=self._transport,
                ) as client:
                    response = client.post(
                        self._settings.rpc_url,
                        json={
                            "jsonrpc": "2.0",
                            "id": next(self._ids),
                            "method": method,
                            "params": params,
                        },
                    )
                    response.raise_for_status()
                    payload = response.json()

                error = payload.get("error")
                if error:
                    message = error.get("message", error) if isinstance(error, dict) else error
                    raise RpcResponseError(str(message))
                return payload.get("result")
            except (httpx.HTTPError, RuntimeError, ValueError) as exc:
                last_exc = exc
                if attempt == attempts:
                    break
                logger.warning(
                    "univ3_pool_rpc_client: rpc_retry method=%s attempt=%s/%s error=%s",
                    method,
                    attempt,
                    attempts,
                    exc,
                )
                time.sleep(delay)
                delay *= 2

        raise DataUnavailableError(f"RPC {method} failed after retries: {last_exc}") from last_exc

    def _respect_rate_limit(self) -> None:
        min_interval = max(0, self._settings.min_interval_ms) / 1000.0
        if min_interval <= 0:
            return

        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_at
            if elapsed < min_interval:
                time.sleep(min_interval - elapsed)
            self._last_request_at = time.monotonic()


def _hex_quantity(value) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as exc:
        raise DataUnavailableError(f"Invalid hex quantity: {value!r}") from exc


def _word_to_address(word: int) -> str:
    return "0x" + f"{word:064x}"[-40:]
