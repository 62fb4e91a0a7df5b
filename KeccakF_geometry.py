#!/usr/bin/env python3
"""
KeccakF_geometry.py

Static geometry of the Keccak-f permutations.

Provides:
 - KeccakFGeometry: width, lane size, number of rounds, rho offsets, round constants
 - keccak_f_geometry(width, nr_rounds=None) -> KeccakFGeometry
 - pi(x, y) / inverse_pi(x, y)

Usage:
    python KeccakF_geometry.py --width 1600
"""
import argparse
from dataclasses import dataclass
from typing import Optional, Tuple

# ---------- Parameters ----------
VALID_WIDTHS = (25, 50, 100, 200, 400, 800, 1600)
ROUND_CONSTANT_LFSR_FEEDBACK = 0x71


def pi(x: int, y: int) -> Tuple[int, int]:
    """Lane (x, y) moves to (y, 2x+3y) under pi."""
    return y, (2 * x + 3 * y) % 5


def inverse_pi(x: int, y: int) -> Tuple[int, int]:
    """Source lane of position (x, y) after pi."""
    # (x, y) = (Y, 2X+3Y)  =>  Y = x, 2X = y - 3x, and 2^-1 = 3 mod 5
    return (3 * (y - 3 * x)) % 5, x


def lfsr86540(register: int) -> Tuple[int, int]:
    """One step of the round constant LFSR, returns (output bit, new register)."""
    bit = register & 1
    if register & 0x80:
        register = ((register << 1) ^ ROUND_CONSTANT_LFSR_FEEDBACK) & 0xFF
    else:
        register = (register << 1) & 0xFF
    return bit, register


def compute_round_constants(lane_size: int, nr_rounds: int) -> Tuple[int, ...]:
    register = 0x01
    constants = []
    for _ in range(nr_rounds):
        rc = 0
        for j in range(7):
            bit_position = (1 << j) - 1
            bit, register = lfsr86540(register)
            if bit and bit_position < lane_size:
                rc |= 1 << bit_position
        constants.append(rc)
    return tuple(constants)


def compute_rho_offsets(lane_size: int) -> Tuple[Tuple[int, ...], ...]:
    offsets = [[0] * 5 for _ in range(5)]
    x, y = 1, 0
    for t in range(24):
        offsets[x][y] = ((t + 1) * (t + 2) // 2) % lane_size
        x, y = pi(x, y)
    return tuple(tuple(column) for column in offsets)


def nominal_rounds(lane_size: int) -> int:
    return 12 + 2 * (lane_size.bit_length() - 1)


@dataclass(frozen=True)
class KeccakFGeometry:
    """Immutable parameters of one Keccak-f instance.

    rho_offsets is indexed [x][y] and already reduced modulo the lane size.
    round_constants holds one value per round, truncated to the lane size.
    """
    width: int
    nr_rounds: int
    rho_offsets: Tuple[Tuple[int, ...], ...]
    round_constants: Tuple[int, ...]

    @property
    def lane_size(self) -> int:
        return self.width // 25

    @property
    def name(self) -> str:
        return f"KeccakF{self.width}"

    @property
    def lane_mask(self) -> int:
        return (1 << self.lane_size) - 1

    def rho_offset(self, x: int, y: int) -> int:
        return self.rho_offsets[x % 5][y % 5]

    def round_constant(self, round_index: int) -> int:
        return self.round_constants[round_index]

    def pi(self, x: int, y: int) -> Tuple[int, int]:
        return pi(x, y)

    def inverse_pi(self, x: int, y: int) -> Tuple[int, int]:
        return inverse_pi(x, y)


def keccak_f_geometry(width: int, nr_rounds: Optional[int] = None) -> KeccakFGeometry:
    """Build the geometry of Keccak-f[width] with nr_rounds rounds (nominal if None)."""
    if width not in VALID_WIDTHS:
        raise ValueError(f"width must be one of {VALID_WIDTHS}, got {width}")
    lane_size = width // 25
    if nr_rounds is None:
        nr_rounds = nominal_rounds(lane_size)
    if nr_rounds < 1:
        raise ValueError("nr_rounds must be positive")
    return KeccakFGeometry(
        width=width,
        nr_rounds=nr_rounds,
        rho_offsets=compute_rho_offsets(lane_size),
        round_constants=compute_round_constants(lane_size, nr_rounds),
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--width", type=int, default=1600)
    parser.add_argument("--rounds", type=int, default=None)
    args = parser.parse_args()

    try:
        geometry = keccak_f_geometry(args.width, args.rounds)
    except ValueError as exc:
        parser.error(str(exc))
    digits = max(1, geometry.lane_size // 4)
    print(f"{geometry.name}: lane size {geometry.lane_size}, {geometry.nr_rounds} rounds")
    for i, rc in enumerate(geometry.round_constants):
        print(f"  RC[{i:2d}] = 0x{rc:0{digits}X}")
    for y in range(5):
        print("  rho y=%d: %s" % (y, " ".join("%3d" % geometry.rho_offset(x, y) for x in range(5))))


if __name__ == "__main__":
    main()
