#!/usr/bin/env python3
"""
KeccakF_state.py

State representation for the Keccak-f permutations.

Lanes are addressed as x + 5*y; a slice value (or slice mask) has one bit per
lane at that same position. A lane of `lane_size` bits split with interleaving
factor s is held as s words, word z holding lane bits z, z+s, z+2s, ...

Provides:
 - lane_index(x, y), slice_bit(mask, x, y), slice_from_lanes(lanes)
 - rol(x, n, bits), lane_dtype(lane_size)
 - interleave_lane / deinterleave_words
 - keccak_round_vec(lanes, geometry, round_index): one vectorized round
 - keccak_f_vec(lanes, geometry, nr_rounds=None): the whole permutation
 - unpack_slices / pack_slices for Keccak-f[25] states packed in 25-bit integers
"""
from typing import Iterable, List, Sequence

import numpy as np

LANE_LETTERS_X = "aeiou"
LANE_LETTERS_Y = "bgkms"


def lane_index(x: int, y: int) -> int:
    return (x % 5) + 5 * (y % 5)


def slice_bit(mask: int, x: int, y: int) -> int:
    return (mask >> lane_index(x, y)) & 1


def slice_from_lanes(lanes: Iterable) -> int:
    """Slice mask with a bit set for every (x, y) in lanes."""
    mask = 0
    for x, y in lanes:
        mask |= 1 << lane_index(x, y)
    return mask


def lane_name(x: int, y: int) -> str:
    """Two-letter lane name, e.g. 'ba' for (0, 0) and 'sa' for (0, 4)."""
    return LANE_LETTERS_Y[y % 5] + LANE_LETTERS_X[x % 5]


def rol(x: int, n: int, bits: int) -> int:
    """Rotate-left x by n over 'bits' bits."""
    n %= bits
    mask = (1 << bits) - 1
    return ((x << n) & mask) | ((x & mask) >> (bits - n))


def lane_dtype(lane_size: int):
    for dtype in (np.uint8, np.uint16, np.uint32, np.uint64):
        if lane_size <= np.dtype(dtype).itemsize * 8:
            return np.dtype(dtype)
    raise ValueError(f"no numpy dtype holds a {lane_size}-bit lane")


# ---------- Interleaving ----------
def interleave_lane(value: int, lane_size: int, factor: int) -> List[int]:
    """Split a lane into `factor` words; word z collects bits z, z+factor, ..."""
    if lane_size % factor:
        raise ValueError("interleaving factor must divide the lane size")
    words = [0] * factor
    for i in range(lane_size):
        if (value >> i) & 1:
            words[i % factor] |= 1 << (i // factor)
    return words


def deinterleave_words(words: Sequence[int], lane_size: int, factor: int) -> int:
    value = 0
    for i in range(lane_size):
        if (words[i % factor] >> (i // factor)) & 1:
            value |= 1 << i
    return value


# ---------- Reference round (vectorized) ----------
def _rol_vec(a, n, lane_size, mask):
    n %= lane_size
    if n == 0:
        return a
    return ((a << a.dtype.type(n)) | (a >> a.dtype.type(lane_size - n))) & mask


def keccak_round_vec(lanes: Sequence[np.ndarray], geometry, round_index: int) -> List[np.ndarray]:
    """Apply one round to 25 lane arrays, each holding one lane of many states.

    Args:
        lanes: 25 arrays of equal shape and dtype lane_dtype(lane_size), lanes[x + 5*y]
        geometry: KeccakFGeometry
        round_index: index of the round constant to inject

    Returns:
        25 new arrays.
    """
    w = geometry.lane_size
    dtype = lanes[0].dtype
    mask = dtype.type(geometry.lane_mask)

    # Theta
    C = [lanes[x] ^ lanes[x + 5] ^ lanes[x + 10] ^ lanes[x + 15] ^ lanes[x + 20] for x in range(5)]
    D = [C[(x - 1) % 5] ^ _rol_vec(C[(x + 1) % 5], 1, w, mask) for x in range(5)]

    # Rho and pi
    B = [None] * 25
    for y in range(5):
        for x in range(5):
            X, Y = geometry.pi(x, y)
            B[lane_index(X, Y)] = _rol_vec(lanes[lane_index(x, y)] ^ D[x], geometry.rho_offset(x, y), w, mask)

    # Chi
    out = [None] * 25
    for y in range(5):
        for x in range(5):
            out[lane_index(x, y)] = B[lane_index(x, y)] ^ ((~B[lane_index(x + 1, y)] & mask) & B[lane_index(x + 2, y)])

    # Iota
    out[0] = out[0] ^ dtype.type(geometry.round_constant(round_index))
    return out


def keccak_f_vec(lanes: Sequence[np.ndarray], geometry, nr_rounds=None) -> List[np.ndarray]:
    if nr_rounds is None:
        nr_rounds = geometry.nr_rounds
    state = list(lanes)
    for i in range(nr_rounds):
        state = keccak_round_vec(state, geometry, i)
    return state


# ---------- Keccak-f[25] packing ----------
def unpack_slices(values: np.ndarray) -> List[np.ndarray]:
    """25-bit packed states -> 25 one-bit lanes (uint8)."""
    return [((values >> np.uint32(i)) & np.uint32(1)).astype(np.uint8) for i in range(25)]


def pack_slices(lanes: Sequence[np.ndarray]) -> np.ndarray:
    out = np.zeros(lanes[0].shape, dtype=np.uint32)
    for i, lane in enumerate(lanes):
        out |= (lane.astype(np.uint32) & np.uint32(1)) << np.uint32(i)
    return out
