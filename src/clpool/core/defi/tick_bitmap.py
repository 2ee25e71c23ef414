"""
Tick bitmap.

One bit per *compressed* tick (tick // tick_spacing), packed into 256-bit
words keyed by word index. Words that become zero are dropped so the mapping
stays sparse. Lets the swap loop find the next initialized tick while
scanning at most one word per step.
"""

from __future__ import annotations

from typing import Dict, Tuple

from ..exceptions import TickRangeError


def position(compressed_tick: int) -> Tuple[int, int]:
    """Word index and bit index of a compressed tick."""
    return compressed_tick >> 8, compressed_tick & 0xFF


def flip_tick(bitmap: Dict[int, int], tick: int, tick_spacing: int) -> None:
    """Toggle the initialized bit of ``tick``."""
    if tick % tick_spacing != 0:
        raise TickRangeError(
            f"Tick {tick} is not a multiple of spacing {tick_spacing}",
            {"tick": tick, "tick_spacing": tick_spacing},
            code="TS",
        )
    word_pos, bit_pos = position(tick // tick_spacing)
    word = bitmap.get(word_pos, 0) ^ (1 << bit_pos)
    if word:
        bitmap[word_pos] = word
    else:
        bitmap.pop(word_pos, None)


def is_initialized(bitmap: Dict[int, int], tick: int, tick_spacing: int) -> bool:
    if tick % tick_spacing != 0:
        return False
    word_pos, bit_pos = position(tick // tick_spacing)
    return bool(bitmap.get(word_pos, 0) >> bit_pos & 1)


def next_initialized_tick_within_one_word(
    bitmap: Dict[int, int],
    tick: int,
    tick_spacing: int,
    lte: bool,
) -> Tuple[int, bool]:
    """
    Next initialized tick in the same word as ``tick``, to the left (lte) or right.

    When nothing is initialized in the word, returns the word boundary so the
    caller can step there and search again.

    Args:
        bitmap: Word index -> 256-bit word
        tick: Starting tick
        tick_spacing: Pool tick spacing
        lte: Search at or to the left of ``tick`` (price decreasing)

    Returns:
        (next_tick, initialized)
    """
    compressed = tick // tick_spacing

    if lte:
        word_pos, bit_pos = position(compressed)
        # All bits at or to the right of bit_pos
        mask = (1 << bit_pos) - 1 + (1 << bit_pos)
        masked = bitmap.get(word_pos, 0) & mask

        if masked:
            most_significant = masked.bit_length() - 1
            return (compressed - (bit_pos - most_significant)) * tick_spacing, True
        return (compressed - bit_pos) * tick_spacing, False

    word_pos, bit_pos = position(compressed + 1)
    # All bits at or to the left of bit_pos
    mask = ~((1 << bit_pos) - 1)
    masked = bitmap.get(word_pos, 0) & mask

    if masked:
        least_significant = (masked & -masked).bit_length() - 1
        return (compressed + 1 + (least_significant - bit_pos)) * tick_spacing, True
    return (compressed + 1 + (0xFF - bit_pos)) * tick_spacing, False
