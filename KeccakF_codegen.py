#!/usr/bin/env python3
"""
KeccakF_codegen.py

C code generation for the Keccak-f permutations.

The generator derives, from theta, rho, pi, chi and iota, the C statements of
one round on named lane variables, plus declarations, the round constant
table, marshalling code and a complete macro file with a permutation
function. It supports:
 - interleaving (each lane held as several narrower words),
 - operators written as C operators or as macros (XOR64, ROL64, ...),
 - two schedules (type 1: more registers, type 2: fewer registers),
 - lane complementing, with per-lane polarity tracked across rounds.

Usage examples:
  python KeccakF_codegen.py --width 1600 --output KeccakF-1600-64.macros
  python KeccakF_codegen.py --width 1600 --interleaving 2 --schedule 2 --lane-complementing --rate 1088
  python KeccakF_codegen.py --width 25 --rounds 2 --display rho --display pi
"""
import argparse
import io
import sys
from dataclasses import dataclass
from functools import reduce

import pandas as pd

from KeccakF_geometry import keccak_f_geometry, pi
from KeccakF_state import (LANE_LETTERS_X, interleave_lane, lane_index, lane_name,
                           slice_bit, slice_from_lanes)

C_WORD_BITS = (8, 16, 32, 64)

# Lanes be, bi, go, ki, mi, sa
LANE_COMPLEMENTING_LANES = ((1, 0), (2, 0), (3, 1), (2, 2), (2, 3), (0, 4))


@dataclass(frozen=True)
class StateNames:
    """Variable names bound to the symbolic roles of the generated code.

    A is the round input, B the lanes after rho and pi, C the sheet parities,
    D the theta terms and E the round output. `state` and `input` name the
    word arrays used by the marshalling code, `round_index` the round number.
    """
    A: str = "A"
    B: str = "B"
    C: str = "C"
    D: str = "D"
    E: str = "E"
    state: str = "state"
    input: str = "input"
    round_index: str = "i"


DEFAULT_NAMES = StateNames()


# ---------- Lane polarity ----------
class LanePolarityError(ValueError):
    pass


def propagate_linear(mask: int) -> int:
    """Polarity mask after theta, rho and pi of a state with polarity `mask`.

    A complemented lane is all-ones away from its true value; rotation keeps
    it all-ones, theta adds the parity of the complemented lanes of the two
    neighbouring columns, pi moves it.
    """
    column = [0] * 5
    for x in range(5):
        for y in range(5):
            column[x] ^= slice_bit(mask, x, y)
    out = 0
    for y in range(5):
        for x in range(5):
            if slice_bit(mask, x, y) ^ column[(x - 1) % 5] ^ column[(x + 1) % 5]:
                out |= 1 << lane_index(*pi(x, y))
    return out


def default_lane_complementing_mask() -> int:
    return slice_from_lanes(LANE_COMPLEMENTING_LANES)


def complement_define_name(mask: int) -> str:
    """Preprocessor symbol selecting the variant complemented per `mask`, e.g. UseBebigokimisa."""
    lanes = "".join(lane_name(i % 5, i // 5) for i in range(25) if (mask >> i) & 1)
    return "Use" + lanes.capitalize()


class LanePolarity:
    """Per-lane {true, complemented} state threaded between round emissions.

    `mask` has a bit set for every lane of the round input held complemented.
    """
    TRUE = 0
    COMPLEMENTED = 1

    def __init__(self, mask=0):
        self.mask = mask
        self.chi_input = None

    def lane(self, x, y):
        return slice_bit(self.mask, x, y)

    def linear_image(self):
        return propagate_linear(self.mask)

    def enter_chi(self, in_chi_mask):
        expected = self.linear_image()
        if in_chi_mask != expected:
            raise LanePolarityError(
                f"chi input mask 0x{in_chi_mask:07X} does not follow from round input mask "
                f"0x{self.mask:07X} (expected 0x{expected:07X})")
        self.chi_input = in_chi_mask

    def leave_chi(self, out_chi_mask):
        if self.chi_input is None:
            raise LanePolarityError("leave_chi() called outside a round")
        self.mask = out_chi_mask
        self.chi_input = None


# ---------- Generator ----------
class KeccakFCodeGen:
    """Code generator for one Keccak-f geometry.

    The configuration (interleaving factor, operator macros, schedule type)
    is set through validating setters before any gen_* call.
    """

    def __init__(self, geometry, interleaving_factor=1, output_macros=False, schedule_type=1):
        self.geometry = geometry
        self.set_interleaving_factor(interleaving_factor)
        self.set_output_macros(output_macros)
        self.set_schedule_type(schedule_type)

    # ----- configuration -----
    def set_interleaving_factor(self, interleaving_factor: int) -> None:
        lane_size = self.geometry.lane_size
        if interleaving_factor < 1 or lane_size % interleaving_factor:
            raise ValueError(f"interleaving factor {interleaving_factor} does not divide the lane size {lane_size}")
        self.interleaving_factor = interleaving_factor
        self.word_size = lane_size // interleaving_factor

    def set_output_macros(self, output_macros: bool) -> None:
        self.output_macros = bool(output_macros)

    def set_schedule_type(self, schedule_type: int) -> None:
        if schedule_type not in (1, 2):
            raise ValueError(f"schedule type must be 1 or 2, got {schedule_type}")
        self.schedule_type = schedule_type

    def variant_name(self) -> str:
        name = self.geometry.name
        if self.interleaving_factor > 1:
            name += f"_int{self.interleaving_factor}"
        return name

    @property
    def word_bits(self) -> int:
        """Width of the C type holding one word."""
        return next(bits for bits in C_WORD_BITS if bits >= self.word_size)

    @property
    def word_type(self) -> str:
        return f"uint{self.word_bits}_t"

    @property
    def word_mask(self) -> int:
        return (1 << self.word_size) - 1

    @property
    def native_words(self) -> bool:
        return self.word_size == self.word_bits

    # ----- names -----
    def build_word_name(self, prefix, x, y, z):
        name = prefix + lane_name(x, y)
        if self.interleaving_factor > 1:
            name += str(z)
        return name

    def build_sheet_name(self, prefix, x, z):
        name = prefix + LANE_LETTERS_X[x % 5]
        if self.interleaving_factor > 1:
            name += str(z)
        return name

    def constant_reference(self, names, z):
        ref = f"{self.variant_name()}RoundConstants[{names.round_index}]"
        if self.interleaving_factor > 1:
            ref += f"[{z}]"
        return ref

    # ----- operators -----
    def str_xor(self, a, b):
        if self.output_macros:
            return f"XOR{self.word_size}({a}, {b})"
        return f"{a} ^ {b}"

    def str_xor_eq(self, a, b):
        if self.output_macros:
            return f"XOReq{self.word_size}({a}, {b});"
        return f"{a} ^= {b};"

    def str_not(self, a, complement=True):
        if not complement:
            return a
        if self.output_macros:
            return f"NOT{self.word_size}({a})"
        return f"(~{a})"

    def str_and(self, a, b):
        if self.output_macros:
            return f"AND{self.word_size}({a}, {b})"
        return f"({a} & {b})"

    def str_and_or_not(self, a, b, lc1, lc2, lor):
        """(a or ~a) AND/OR (b or ~b)."""
        a = self.str_not(a, lc1)
        b = self.str_not(b, lc2)
        if not lor:
            return self.str_and(a, b)
        if self.output_macros:
            return f"OR{self.word_size}({a}, {b})"
        return f"({a} | {b})"

    def str_const(self, a):
        if self.output_macros:
            return f"CONST{self.word_size}({a})"
        return a

    def str_rol(self, symbol, amount):
        amount %= self.word_size
        if amount == 0:
            return symbol
        if self.output_macros:
            return f"ROL{self.word_size}({symbol}, {amount})"
        if self.native_words:
            return f"(({symbol} << {amount}) ^ ({symbol} >> {self.word_size - amount}))"
        return f"(({symbol} << {amount}) ^ (({symbol} & 0x{self.word_mask:X}) >> {self.word_size - amount}))"

    def rotated_word(self, word_name, amount, z):
        """Word z of a lane rotated left by `amount`, the lane's words being word_name(0..s-1)."""
        s = self.interleaving_factor
        amount %= self.geometry.lane_size
        source = (z - amount) % s
        return self.str_rol(word_name(source), (source + amount) // s)

    def str_chi(self, b0, b1, b2, c0, c1, c2, cout):
        """b0 ^ (~b1 & b2) on operands held with polarities c0, c1, c2, producing polarity cout.

        Both b0 ^ (l1 & l2) and b0 ^ (m1 | m2) are valid once the literals
        are negated to match the polarities; the form with fewer NOTs is
        kept, AND on a tie.
        """
        and_nots = (c1 == 0) + (c2 == 1) + (c0 ^ cout)
        or_nots = (c1 == 1) + (c2 == 0) + (1 ^ c0 ^ cout)
        if and_nots <= or_nots:
            inner = self.str_and_or_not(b1, b2, c1 == 0, c2 == 1, False)
            negate = c0 ^ cout
        else:
            inner = self.str_and_or_not(b1, b2, c1 == 1, c2 == 0, True)
            negate = 1 ^ c0 ^ cout
        return self.str_xor(self.str_not(b0, negate), inner)

    # ----- declarations -----
    def gen_declarations(self, fout, names=DEFAULT_NAMES):
        self.gen_declarations_lanes(fout, names.A)
        self.gen_declarations_lanes(fout, names.B)
        self.gen_declarations_sheets(fout, names.C)
        self.gen_declarations_sheets(fout, names.D)
        self.gen_declarations_lanes(fout, names.E)

    def gen_declarations_lanes(self, fout, prefix):
        s = self.interleaving_factor
        for y in range(5):
            words = [self.build_word_name(prefix, x, y, z) for x in range(5) for z in range(s)]
            fout.write(f"{self.word_type} {', '.join(words)};\n")

    def gen_declarations_sheets(self, fout, prefix):
        s = self.interleaving_factor
        words = [self.build_sheet_name(prefix, x, z) for x in range(5) for z in range(s)]
        fout.write(f"{self.word_type} {', '.join(words)};\n")

    # ----- rounds -----
    def gen_code_for_prepare_theta(self, fout, names=DEFAULT_NAMES):
        """Sheet parities C of the state A, for theta in the first round."""
        for x in range(5):
            for z in range(self.interleaving_factor):
                lanes = [self.build_word_name(names.A, x, y, z) for y in range(5)]
                fout.write(f"{self.build_sheet_name(names.C, x, z)} = {reduce(self.str_xor, lanes)};\n")

    def gen_code_for_round(self, fout, prepare_theta, in_chi_mask=0, out_chi_mask=0,
                           names=DEFAULT_NAMES, header="", polarity=None):
        """One round from the A's (with sheet parities in the C's) into the E's.

        in_chi_mask and out_chi_mask give the lanes held complemented at the
        input of chi (after rho and pi) and at its output. If `polarity` is
        given, in_chi_mask is checked against it and the tracker advances to
        out_chi_mask. With prepare_theta, the C's receive the sheet parities
        of the E's for the next round.
        """
        if polarity is not None:
            polarity.enter_chi(in_chi_mask)
        s = self.interleaving_factor
        A = lambda x, y, z: self.build_word_name(names.A, x, y, z)
        B = lambda x, y, z: self.build_word_name(names.B, x, y, z)
        C = lambda x, z: self.build_sheet_name(names.C, x, z)
        D = lambda x, z: self.build_sheet_name(names.D, x, z)
        E = lambda x, y, z: self.build_word_name(names.E, x, y, z)

        lines = []
        for x in range(5):
            for z in range(s):
                rotated = self.rotated_word(lambda zz: C((x + 1) % 5, zz), 1, z)
                lines.append(f"{D(x, z)} = {self.str_xor(C((x - 1) % 5, z), rotated)};")
            if self.schedule_type == 2:
                for y in range(5):
                    for z in range(s):
                        lines.append(self.str_xor_eq(A(x, y, z), D(x, z)))

        for Y in range(5):
            for X in range(5):
                x, y = self.geometry.inverse_pi(X, Y)
                r = self.geometry.rho_offset(x, y)
                for z in range(s):
                    if self.schedule_type == 1:
                        source = (z - r) % s
                        lines.append(self.str_xor_eq(A(x, y, source), D(x, source)))
                    rotated = self.rotated_word(lambda zz: A(x, y, zz), r, z)
                    lines.append(f"{B(X, Y, z)} = {rotated};")
            for z in range(s):
                for X in range(5):
                    chi = self.str_chi(B(X, Y, z), B(X + 1, Y, z), B(X + 2, Y, z),
                                       slice_bit(in_chi_mask, X, Y),
                                       slice_bit(in_chi_mask, X + 1, Y),
                                       slice_bit(in_chi_mask, X + 2, Y),
                                       slice_bit(out_chi_mask, X, Y))
                    lines.append(f"{E(X, Y, z)} = {chi};")
                    if X == 0 and Y == 0:
                        lines.append(self.str_xor_eq(E(0, 0, z), self.str_const(self.constant_reference(names, z))))
                    if prepare_theta:
                        if Y == 0:
                            lines.append(f"{C(X, z)} = {E(X, Y, z)};")
                        else:
                            lines.append(self.str_xor_eq(C(X, z), E(X, Y, z)))

        if polarity is not None:
            polarity.leave_chi(out_chi_mask)
        fout.write(header)
        for line in lines:
            fout.write(line + "\n")

    def gen_round_constants(self, fout):
        name = f"{self.variant_name()}RoundConstants"
        s = self.interleaving_factor
        suffix = "ULL" if self.word_bits == 64 else ""
        digits = max(1, (self.word_size + 3) // 4)
        constants = self.geometry.round_constants
        if s == 1:
            rows = [f"0x{rc:0{digits}X}{suffix}" for rc in constants]
            fout.write(f"static const {self.word_type} {name}[{len(constants)}] = {{\n")
        else:
            rows = []
            for rc in constants:
                words = interleave_lane(rc, self.geometry.lane_size, s)
                rows.append("{ " + ", ".join(f"0x{w:0{digits}X}{suffix}" for w in words) + " }")
            fout.write(f"static const {self.word_type} {name}[{len(constants)}][{s}] = {{\n")
        fout.write(",\n".join("    " + row for row in rows))
        fout.write("\n};\n\n")

    # ----- marshalling -----
    def gen_copy_from_state_and_xor(self, fout, bits_to_xor, names=DEFAULT_NAMES, mask=0):
        """Load the A's from names.state, XORing names.input into the first bits_to_xor bits.

        Lanes set in `mask` are loaded complemented.
        """
        s = self.interleaving_factor
        unit = self.geometry.lane_size if s > 1 else self.word_size
        if bits_to_xor < 0 or bits_to_xor > self.geometry.width or bits_to_xor % unit:
            raise ValueError(f"bits_to_xor must be a multiple of {unit} between 0 and {self.geometry.width}")
        for y in range(5):
            for x in range(5):
                for z in range(s):
                    k = lane_index(x, y) * s + z
                    expr = f"{names.state}[{k}]"
                    if k * self.word_size < bits_to_xor:
                        expr = self.str_xor(expr, f"{names.input}[{k}]")
                        if not self.output_macros:
                            expr = f"({expr})"
                    expr = self.str_not(expr, slice_bit(mask, x, y))
                    fout.write(f"{self.build_word_name(names.A, x, y, z)} = {expr};\n")

    def gen_copy_to_state(self, fout, names=DEFAULT_NAMES, mask=0):
        """Store the A's into names.state, undoing the complement of the lanes in `mask`."""
        s = self.interleaving_factor
        for y in range(5):
            for x in range(5):
                for z in range(s):
                    k = lane_index(x, y) * s + z
                    expr = self.str_not(self.build_word_name(names.A, x, y, z), slice_bit(mask, x, y))
                    if not self.native_words:
                        expr = self.str_and(expr, f"0x{self.word_mask:X}")
                    fout.write(f"{names.state}[{k}] = {expr};\n")

    def gen_copy_state_variables(self, fout, target=StateNames(A="X"), source=StateNames(A="Y")):
        s = self.interleaving_factor
        for y in range(5):
            for x in range(5):
                for z in range(s):
                    fout.write(f"{self.build_word_name(target.A, x, y, z)} = "
                               f"{self.build_word_name(source.A, x, y, z)};\n")

    # ----- assembly -----
    def gen_operator_macros(self, fout):
        w = self.word_size
        if self.native_words:
            rol = f"(((a) << (offset)) ^ ((a) >> ({w}-(offset))))"
        else:
            rol = f"(((a) << (offset)) ^ (((a) & 0x{self.word_mask:X}) >> ({w}-(offset))))"
        macros = [
            (f"XOR{w}", "(a, b)", "((a) ^ (b))"),
            (f"XOReq{w}", "(a, b)", "(a) ^= (b)"),
            (f"AND{w}", "(a, b)", "((a) & (b))"),
            (f"OR{w}", "(a, b)", "((a) | (b))"),
            (f"NOT{w}", "(a)", "(~(a))"),
            (f"ROL{w}", "(a, offset)", rol),
            (f"CONST{w}", "(a)", "(a)"),
        ]
        for name, params, body in macros:
            fout.write(f"#ifndef {name}\n#define {name}{params} {body}\n#endif\n")
        fout.write("\n")

    def write_macro(self, fout, signature, body):
        buf = io.StringIO()
        body(buf)
        fout.write(f"#define {signature} \\\n")
        for line in buf.getvalue().splitlines():
            fout.write(f"    {line} \\\n")
        fout.write("\n")

    def gen_variant_macros(self, fout, mask, rates=()):
        round_names = StateNames(A="A##", E="E##")
        copy_names = StateNames(A="X##")
        in_chi_mask = propagate_linear(mask)
        polarity = LanePolarity(mask)
        self.write_macro(fout, "thetaRhoPiChiIotaPrepareTheta(i, A, E)",
                         lambda out: self.gen_code_for_round(out, True, in_chi_mask, mask, round_names, polarity=polarity))
        self.write_macro(fout, "thetaRhoPiChiIota(i, A, E)",
                         lambda out: self.gen_code_for_round(out, False, in_chi_mask, mask, round_names, polarity=polarity))
        for rate in rates:
            self.write_macro(fout, f"copyFromStateAndXor{rate}bits(X, state, input)",
                             lambda out: self.gen_copy_from_state_and_xor(out, rate, copy_names, mask))
        self.write_macro(fout, "copyFromState(X, state)",
                         lambda out: self.gen_copy_from_state_and_xor(out, 0, copy_names, mask))
        self.write_macro(fout, "copyToState(state, X)",
                         lambda out: self.gen_copy_to_state(out, copy_names, mask))
        self.write_macro(fout, "copyStateVariables(X, Y)",
                         lambda out: self.gen_copy_state_variables(out, StateNames(A="X##"), StateNames(A="Y##")))

    def gen_permutation_function(self, fout):
        n = self.geometry.nr_rounds
        fout.write(f"void {self.variant_name()}_StatePermute({self.word_type} *state)\n{{\n")
        fout.write("    declareABCDE\n")
        fout.write("    copyFromState(A, state)\n")
        fout.write("    prepareTheta\n")
        for i in range(n):
            source, target = ("A", "E") if i % 2 == 0 else ("E", "A")
            macro = "thetaRhoPiChiIotaPrepareTheta" if i < n - 1 else "thetaRhoPiChiIota"
            fout.write(f"    {macro}({i}, {source}, {target})\n")
        fout.write(f"    copyToState(state, {'E' if n % 2 else 'A'})\n}}\n")

    def gen_macro_file(self, fout, lane_complementing=False, rates=()):
        """Complete C unit: macros, round constants and <variant>_StatePermute().

        With lane_complementing, the lane complemented variant is emitted too
        and selected by defining Use<lanes> (e.g. UseBebigokimisa).
        """
        for rate in rates:
            self.gen_copy_from_state_and_xor(io.StringIO(), rate)
        g = self.geometry
        fout.write(f"/* {g.name}, {g.nr_rounds} rounds, lane size {g.lane_size}, "
                   f"interleaving factor {self.interleaving_factor}, schedule type {self.schedule_type} */\n")
        fout.write("/* Generated code, do not edit. */\n\n")
        fout.write("#include <stdint.h>\n\n")
        if self.output_macros:
            self.gen_operator_macros(fout)
        self.write_macro(fout, "declareABCDE", lambda out: self.gen_declarations(out))
        self.write_macro(fout, "prepareTheta", lambda out: self.gen_code_for_prepare_theta(out))
        if lane_complementing:
            mask = default_lane_complementing_mask()
            fout.write(f"#ifdef {complement_define_name(mask)}\n\n")
            self.gen_variant_macros(fout, mask, rates)
            fout.write("#else\n\n")
            self.gen_variant_macros(fout, 0, rates)
            fout.write("#endif\n\n")
        else:
            self.gen_variant_macros(fout, 0, rates)
        self.gen_round_constants(fout)
        self.gen_permutation_function(fout)

    # ----- diagnostics -----
    def display_round_constants(self, fout=None):
        fout = fout or sys.stdout
        s = self.interleaving_factor
        digits = max(1, (self.geometry.lane_size + 3) // 4)
        word_digits = max(1, (self.word_size + 3) // 4)
        rows = []
        for i, rc in enumerate(self.geometry.round_constants):
            row = {"round": i, "constant": f"0x{rc:0{digits}X}"}
            if s > 1:
                for z, word in enumerate(interleave_lane(rc, self.geometry.lane_size, s)):
                    row[f"word{z}"] = f"0x{word:0{word_digits}X}"
            rows.append(row)
        fout.write(pd.DataFrame(rows).to_string(index=False) + "\n")

    def display_rho_offsets(self, fout=None, modulo_word_length=False):
        fout = fout or sys.stdout
        modulus = self.word_size if modulo_word_length else self.geometry.lane_size
        table = pd.DataFrame(
            [[self.geometry.rho_offset(x, y) % modulus for x in range(5)] for y in range(5)],
            index=pd.Index(range(5), name="y"),
            columns=pd.Index(range(5), name="x"),
        )
        fout.write(table.to_string() + "\n")

    def display_pi(self, fout=None):
        fout = fout or sys.stdout
        rows = []
        for y in range(5):
            for x in range(5):
                X, Y = self.geometry.pi(x, y)
                rows.append({"lane": lane_name(x, y), "x": x, "y": y,
                             "to": lane_name(X, Y), "to_x": X, "to_y": Y})
        fout.write(pd.DataFrame(rows).to_string(index=False) + "\n")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--width", type=int, default=1600)
    parser.add_argument("--rounds", type=int, default=None, help="number of rounds (default: nominal)")
    parser.add_argument("--interleaving", type=int, default=1)
    parser.add_argument("--macros", action="store_true", help="write operations as XOR64(), ROL64(), ... macros")
    parser.add_argument("--schedule", type=int, default=1)
    parser.add_argument("--lane-complementing", action="store_true")
    parser.add_argument("--rate", type=int, action="append", default=[],
                        help="emit copyFromStateAndXor<RATE>bits (repeatable)")
    parser.add_argument("--display", choices=["constants", "rho", "rho-words", "pi"], action="append", default=[])
    parser.add_argument("--output", default=None, help="output file (default: stdout)")
    args = parser.parse_args()

    try:
        geometry = keccak_f_geometry(args.width, args.rounds)
        gen = KeccakFCodeGen(geometry, args.interleaving, args.macros, args.schedule)
    except ValueError as exc:
        parser.error(str(exc))

    if args.display:
        for what in args.display:
            if what == "constants":
                gen.display_round_constants()
            elif what == "rho":
                gen.display_rho_offsets()
            elif what == "rho-words":
                gen.display_rho_offsets(modulo_word_length=True)
            else:
                gen.display_pi()
        return

    try:
        for rate in args.rate:
            gen.gen_copy_from_state_and_xor(io.StringIO(), rate)
    except ValueError as exc:
        parser.error(str(exc))

    if args.output is None:
        gen.gen_macro_file(sys.stdout, args.lane_complementing, args.rate)
        return
    with open(args.output, "w") as f:
        gen.gen_macro_file(f, args.lane_complementing, args.rate)
    print(f"Wrote {args.output} ({gen.variant_name()}, {geometry.nr_rounds} rounds)")


if __name__ == "__main__":
    main()
