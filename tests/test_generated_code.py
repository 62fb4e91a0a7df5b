"""Compile the generated C and check it against the numpy reference and the Keccak-f[25] table."""
import io

import numpy as np
import pytest

from KeccakF25_LUT import LUT_SIZE
from KeccakF_codegen import KeccakFCodeGen
from KeccakF_geometry import keccak_f_geometry
from KeccakF_state import deinterleave_words, interleave_lane, keccak_f_vec, lane_dtype

FULL_SPACE_25 = r"""
#include <stdio.h>
#include <stdint.h>
#include "keccak_gen.h"

#define BATCH 65536

int main(int argc, char **argv)
{
    static uint32_t out[BATCH];
    uint8_t state[25];
    FILE *f;
    uint32_t base, j, v, r;
    int k;

    if (argc != 2 || !(f = fopen(argv[1], "wb")))
        return 1;
    for (base = 0; base < (1u << 25); base += BATCH) {
        for (j = 0; j < BATCH; j++) {
            v = base + j;
            for (k = 0; k < 25; k++)
                state[k] = (v >> k) & 1;
            KeccakF25_StatePermute(state);
            r = 0;
            for (k = 0; k < 25; k++)
                r |= (uint32_t)(state[k] & 1) << k;
            out[j] = r;
        }
        if (fwrite(out, sizeof(uint32_t), BATCH, f) != BATCH)
            return 1;
    }
    return fclose(f) ? 1 : 0;
}
"""

STREAM = r"""
#include <stdio.h>
#include <stdint.h>
#include "keccak_gen.h"

int main(int argc, char **argv)
{
    WORD state[NWORDS];
    FILE *in, *out;

    if (argc != 3 || !(in = fopen(argv[1], "rb")) || !(out = fopen(argv[2], "wb")))
        return 1;
    while (fread(state, sizeof(WORD), NWORDS, in) == NWORDS) {
        PERMUTE(state);
        if (fwrite(state, sizeof(WORD), NWORDS, out) != NWORDS)
            return 1;
    }
    fclose(in);
    return fclose(out) ? 1 : 0;
}
"""

ABSORB_1600 = r"""
#include <stdio.h>
#include <stdint.h>
#include "keccak_gen.h"

static void absorb(uint64_t *state, const uint64_t *input)
{
    declareABCDE
    copyFromStateAndXor1088bits(A, state, input)
    copyStateVariables(E, A)
    copyToState(state, E)
}

int main(int argc, char **argv)
{
    uint64_t state[25], input[17];
    FILE *in, *out;

    if (argc != 3 || !(in = fopen(argv[1], "rb")) || !(out = fopen(argv[2], "wb")))
        return 1;
    while (fread(state, 8, 25, in) == 25 && fread(input, 8, 17, in) == 17) {
        absorb(state, input);
        fwrite(state, 8, 25, out);
    }
    fclose(in);
    return fclose(out) ? 1 : 0;
}
"""


def macro_file(gen, lane_complementing=False, rates=()):
    out = io.StringIO()
    gen.gen_macro_file(out, lane_complementing, rates)
    return out.getvalue()


# ---------- Keccak-f[25], whole state space ----------
def check_full_space(build_c, run_c, tmp_path, oracle, nr_rounds, defines=(), **config):
    gen = KeccakFCodeGen(keccak_f_geometry(25, nr_rounds), **config)
    exe = build_c(macro_file(gen, lane_complementing=True), FULL_SPACE_25, defines)
    result = tmp_path / "out.bin"
    run_c(exe, result)
    table = np.fromfile(result, dtype=np.uint32)
    assert len(table) == LUT_SIZE
    np.testing.assert_array_equal(table, oracle(nr_rounds))


def test_full_space_one_round(build_c, run_c, tmp_path, oracle):
    check_full_space(build_c, run_c, tmp_path, oracle, 1)


@pytest.mark.slow
@pytest.mark.parametrize("nr_rounds", [2, 12])
def test_full_space(build_c, run_c, tmp_path, oracle, nr_rounds):
    check_full_space(build_c, run_c, tmp_path, oracle, nr_rounds)


@pytest.mark.slow
def test_full_space_lane_complementing(build_c, run_c, tmp_path, oracle):
    check_full_space(build_c, run_c, tmp_path, oracle, 2, defines=["UseBebigokimisa"])


@pytest.mark.slow
def test_full_space_schedule_2_macros(build_c, run_c, tmp_path, oracle):
    check_full_space(build_c, run_c, tmp_path, oracle, 2, defines=["UseBebigokimisa"],
                     schedule_type=2, output_macros=True)


# ---------- Other widths, random states ----------
def random_states(width, count, seed):
    lane_size = width // 25
    dtype = lane_dtype(lane_size)
    rng = np.random.default_rng(seed)
    return rng.integers(0, (1 << lane_size) - 1, size=(count, 25), dtype=dtype, endpoint=True)


def to_words(states, lane_size, factor, word_dtype):
    words = [[w for value in row for w in interleave_lane(int(value), lane_size, factor)] for row in states]
    return np.array(words, dtype=word_dtype)


def from_words(words, lane_size, factor):
    lanes = words.reshape(-1, 25, factor)
    return [[deinterleave_words([int(w) for w in lane], lane_size, factor) for lane in row] for row in lanes]


CONFIGS = [
    # width, rounds, interleaving, macros, schedule, lane complementing
    (50, None, 1, False, 1, False),
    (100, None, 2, False, 2, False),
    (200, None, 1, False, 1, True),
    (200, 3, 2, True, 1, False),
    (400, None, 1, False, 2, True),
    (800, None, 2, False, 1, False),
    (1600, None, 1, False, 1, False),
    (1600, None, 1, False, 1, True),
    (1600, None, 2, True, 2, True),
    (1600, 5, 2, False, 1, False),
    (1600, None, 4, False, 1, False),
]


@pytest.mark.parametrize("width,nr_rounds,factor,macros,schedule,complementing", CONFIGS)
def test_random_states(build_c, run_c, tmp_path, width, nr_rounds, factor, macros, schedule, complementing):
    geometry = keccak_f_geometry(width, nr_rounds)
    gen = KeccakFCodeGen(geometry, factor, macros, schedule)
    word_dtype = lane_dtype(gen.word_size)
    defines = [f"WORD={gen.word_type}", f"NWORDS={25 * factor}", f"PERMUTE={gen.variant_name()}_StatePermute"]
    if complementing:
        defines.append("UseBebigokimisa")
    exe = build_c(macro_file(gen, complementing), STREAM, defines)

    states = random_states(width, 200, seed=width + factor)
    to_words(states, geometry.lane_size, factor, word_dtype).tofile(tmp_path / "in.bin")
    run_c(exe, tmp_path / "in.bin", tmp_path / "out.bin")
    got = from_words(np.fromfile(tmp_path / "out.bin", dtype=word_dtype), geometry.lane_size, factor)

    expected = keccak_f_vec([states[:, k] for k in range(25)], geometry)
    assert len(got) == len(states)
    for n, row in enumerate(got):
        assert row == [int(lane[n]) for lane in expected]


@pytest.mark.parametrize("complementing", [False, True])
def test_absorb_macros(build_c, run_c, tmp_path, complementing):
    gen = KeccakFCodeGen(keccak_f_geometry(1600))
    defines = ["UseBebigokimisa"] if complementing else []
    exe = build_c(macro_file(gen, True, (1088,)), ABSORB_1600, defines)

    rng = np.random.default_rng(11)
    states = rng.integers(0, (1 << 64) - 1, size=(20, 25), dtype=np.uint64, endpoint=True)
    inputs = rng.integers(0, (1 << 64) - 1, size=(20, 17), dtype=np.uint64, endpoint=True)
    np.concatenate([states, inputs], axis=1).tofile(tmp_path / "in.bin")
    run_c(exe, tmp_path / "in.bin", tmp_path / "out.bin")

    got = np.fromfile(tmp_path / "out.bin", dtype=np.uint64).reshape(20, 25)
    expected = states.copy()
    expected[:, :17] ^= inputs
    np.testing.assert_array_equal(got, expected)
