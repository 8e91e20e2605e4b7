from __future__ import annotations

from collections.abc import Callable, Iterable

from lpbook.domain.entities.market import NearestInitializedTicks
from lpbook.domain.services.univ3_math import round_down_to_spacing


WORD_BITS = 256
WORD_MASK = WORD_BITS - 1


def compress_tick(tick: int, tick_spacing: int) -> int:
    return round_down_to_spacing(tick, tick_spacing) // tick_spacing


def word_position(tick: int, tick_spacing: int) -> int:
    return compress_tick(tick, tick_spacing) >> 8


def bit_position(tick: int, tick_spacing: int) -> int:
    return compress_tick(tick, tick_spacing) & WORD_MASK


def is_bit_set(word: int, bit: int) -> bool:
    return (word >> bit) & 1 == 1


def tick_from_bit(word_index: int, bit: int, tick_spacing: int) -> int:
    return (word_index * WORD_BITS + bit) * tick_spacing


def build_bitmap_words(initialized_ticks: Iterable[int], tick_spacing: int) -> dict[int, int]:
    """Pack initialized ticks into bitmap words keyed by word position."""
    words: dict[int, int] = {}
    for tick in initialized_ticks:
        if tick % tick_spacing != 0:
            raise ValueError(f"tick {tick} is not a multiple of spacing {tick_spacing}.")
        compressed = tick // tick_spacing
        index = compressed >> 8
        words[index] = words.get(index, 0) | (1 << (compressed & WORD_MASK))
    return words


def find_nearest_initialized_ticks(
    *,
    active_tick: int,
    tick_spacing: int,
    word_at: Callable[[int], int],
    search_words: int,
) -> NearestInitializedTicks:
    """Walk the bitmap outward from the active tick, one side at a time.

    The first set bit met while walking away from the active bit wins, which is the
    closest initialized tick only within a single word.
    """
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive.")
    if search_words < 0:
        raise ValueError("search_words must be >= 0.")

    active_word = word_position(active_tick, tick_spacing)
    active_bit = bit_position(active_tick, tick_spacing)
    cache: dict[int, int] = {}

    def load(index: int) -> int:
        if index not in cache:
            cache[index] = int(word_at(index))
        return cache[index]

    right_tick: int | None = None
    start = active_bit + 1
    for index in range(active_word, active_word + search_words + 1):
        word = load(index)
        if word:
            for bit in range(start, WORD_BITS):
                if is_bit_set(word, bit):
                    right_tick = tick_from_bit(index, bit, tick_spacing)
                    break
        if right_tick is not None:
            break
        start = 0

    left_tick: int | None = None
    start = active_bit - 1
    for index in range(active_word, active_word - search_words - 1, -1):
        word = load(index)
        if word:
            for bit in range(start, -1, -1):
                if is_bit_set(word, bit):
                    left_tick = tick_from_bit(index, bit, tick_spacing)
                    break
        if left_tick is not None:
            break
        start = WORD_MASK

    return NearestInitializedTicks(
        active_tick=active_tick,
        left_tick=left_tick,
        right_tick=right_tick,
    )
