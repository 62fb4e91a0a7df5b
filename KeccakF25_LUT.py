#!/usr/bin/env python3
"""
KeccakF25_LUT.py

Keccak-f[25] as a look-up table: the image of every one of the 2^25 states,
computed by brute force (vectorized over batches of states) or retrieved from
a cache entry keyed by (width, number of rounds).

Usage examples:
  python KeccakF25_LUT.py --rounds 2
  python KeccakF25_LUT.py --rounds 12 --lut-dir /tmp/luts --check
  python KeccakF25_LUT.py --rounds 3 --avalanche --plot plots/avalanche_3rounds.png

Notes:
 - lut[i] is the image of the state whose lane x+5y is bit x+5y of i.
 - The cache is an internal, unversioned numpy .npz entry per round count.
"""
import argparse
import contextlib
import logging
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from KeccakF_geometry import keccak_f_geometry
from KeccakF_state import keccak_f_vec, lane_name, pack_slices, unpack_slices

logger = logging.getLogger(__name__)

# ---------- Parameters ----------
WIDTH = 25
LUT_SIZE = 1 << WIDTH
DEFAULT_BATCH = 1 << 20
DEFAULT_LUT_DIR = "."


@dataclass(frozen=True)
class LUTKey:
    width: int
    nr_rounds: int

    @property
    def filename(self) -> str:
        return f"KeccakF-{self.width}-{self.nr_rounds}rounds.LUT.npz"


# ---------- Stores ----------
class LUTStore:
    """Key -> table store. load() returns None on any miss."""

    def load(self, key: LUTKey) -> Optional[np.ndarray]:
        raise NotImplementedError

    def save(self, key: LUTKey, table: np.ndarray) -> None:
        raise NotImplementedError


class DiskLUTStore(LUTStore):
    """One .npz file per key in `directory`."""

    def __init__(self, directory=DEFAULT_LUT_DIR):
        self.directory = Path(directory)

    def path_for(self, key: LUTKey) -> Path:
        return self.directory / key.filename

    def load(self, key):
        path = self.path_for(key)
        if not path.exists():
            logger.info("no cached LUT at %s", path)
            return None
        try:
            entry = np.load(path)
            if not isinstance(entry, np.lib.npyio.NpzFile):
                logger.warning("LUT %s is not an .npz archive, rebuilding", path)
                return None
            with entry:
                width = int(entry["width"])
                nr_rounds = int(entry["nr_rounds"])
                table = entry["lut"]
        except (OSError, ValueError, TypeError, KeyError, EOFError, zipfile.BadZipFile) as exc:
            logger.warning("unreadable LUT %s (%s), rebuilding", path, exc)
            return None
        if (width, nr_rounds) != (key.width, key.nr_rounds):
            logger.warning("LUT %s is for width %d with %d rounds, rebuilding", path, width, nr_rounds)
            return None
        if table.dtype != np.uint32 or table.shape != (1 << key.width,):
            logger.warning("LUT %s has shape %s and dtype %s, rebuilding", path, table.shape, table.dtype)
            return None
        return table

    def save(self, key, table):
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    np.savez(f, lut=table, width=key.width, nr_rounds=key.nr_rounds)
                os.replace(tmp, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            logger.warning("could not save LUT to %s: %s", path, exc)
            return
        logger.info("saved LUT to %s", path)


# ---------- Oracle ----------
class KeccakF25LUT:
    """Keccak-f[25] truth table for a given number of rounds.

    On construction the table is retrieved from `store` or, failing that,
    generated by brute force and saved back to `store`.
    """

    def __init__(self, nr_rounds=None, store: Optional[LUTStore] = None, batch_size=DEFAULT_BATCH):
        self.geometry = keccak_f_geometry(WIDTH, nr_rounds)
        self.nr_rounds = self.geometry.nr_rounds
        self.key = LUTKey(WIDTH, self.nr_rounds)
        self.store = store if store is not None else DiskLUTStore()
        if batch_size < 1 or LUT_SIZE % batch_size:
            raise ValueError("batch_size must divide 2^25")
        self.batch_size = batch_size

        table = self.retrieve_lut()
        if table is None:
            table = self.generate_lut()
            self.save_lut(table)
        table = np.asarray(table, dtype=np.uint32)
        table.setflags(write=False)
        self.lut = table

    def retrieve_lut(self) -> Optional[np.ndarray]:
        table = self.store.load(self.key)
        if table is not None:
            logger.info("retrieved %s", self.key.filename)
        return table

    def save_lut(self, table: np.ndarray) -> None:
        self.store.save(self.key, table)

    def generate_lut(self) -> np.ndarray:
        """Apply the permutation to every state, batch by batch in index order."""
        logger.info("generating Keccak-f[25] LUT for %d rounds", self.nr_rounds)
        table = np.empty(LUT_SIZE, dtype=np.uint32)
        for start in range(0, LUT_SIZE, self.batch_size):
            stop = start + self.batch_size
            table[start:stop] = self.permute_batch(np.arange(start, stop, dtype=np.uint32))
        return table

    def permute_batch(self, values: np.ndarray) -> np.ndarray:
        lanes = keccak_f_vec(unpack_slices(values), self.geometry, self.nr_rounds)
        return pack_slices(lanes)

    def __len__(self):
        return len(self.lut)

    def __getitem__(self, index):
        return int(self.lut[index])


def is_bijective(table: np.ndarray) -> bool:
    counts = np.bincount(table, minlength=len(table))
    return len(counts) == len(table) and bool((counts == 1).all())


# ---------- Avalanche ----------
def avalanche_matrix(table: np.ndarray, batch_size=DEFAULT_BATCH) -> np.ndarray:
    """Bit flip probabilities of a permutation of n-bit values given as a table.

    Entry [i, j] is the fraction of inputs for which flipping input bit i
    flips output bit j.
    """
    size = len(table)
    n = size.bit_length() - 1
    if size != 1 << n or n > 32:
        raise ValueError("table length must be a power of two up to 2^32")
    table = np.asarray(table, dtype=np.uint32)
    counts = np.zeros((n, n), dtype=np.int64)
    for start in range(0, size, batch_size):
        idx = np.arange(start, min(start + batch_size, size), dtype=np.uint32)
        image = table[idx]
        for i in range(n):
            diff = image ^ table[idx ^ np.uint32(1 << i)]
            bits = np.unpackbits(diff.astype("<u4").view(np.uint8), bitorder="little").reshape(-1, 32)
            counts[i] += bits[:, :n].sum(axis=0, dtype=np.int64)
    return counts / size


def avalanche_summary(matrix: np.ndarray) -> pd.DataFrame:
    rows = []
    for i, probs in enumerate(matrix):
        rows.append({
            "input_bit": i,
            "lane": lane_name(i % 5, i // 5),
            "avg_flipped_bits": float(probs.sum()),
            "min_prob": float(probs.min()),
            "max_prob": float(probs.max()),
        })
    return pd.DataFrame(rows)


def plot_avalanche(matrix: np.ndarray, out_png, title=None) -> None:
    plt.figure(figsize=(7, 6))
    plt.imshow(matrix, cmap="viridis", vmin=0.0, vmax=1.0)
    plt.colorbar(label="P(output bit flips)")
    plt.xlabel("Output bit (x + 5y)")
    plt.ylabel("Flipped input bit (x + 5y)")
    if title:
        plt.title(title)
    plt.tight_layout()
    Path(out_png).parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_png, dpi=150)
    plt.close()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--rounds", type=int, default=None, help="number of rounds (default: nominal 12)")
    parser.add_argument("--lut-dir", default=DEFAULT_LUT_DIR)
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH)
    parser.add_argument("--check", action="store_true", help="verify that the table is a permutation")
    parser.add_argument("--avalanche", action="store_true", help="print bit flip statistics per input bit")
    parser.add_argument("--plot", default=None, help="save the avalanche matrix as a heatmap PNG")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    t0 = time.time()
    try:
        lut = KeccakF25LUT(args.rounds, DiskLUTStore(args.lut_dir), args.batch_size)
    except ValueError as exc:
        parser.error(str(exc))

    print(f"Keccak-f[25], {lut.nr_rounds} rounds: {len(lut)} entries")
    for i in range(4):
        print(f"  LUT[0x{i:07X}] = 0x{lut[i]:07X}")
    if args.check:
        print("Bijective:", is_bijective(lut.lut))

    if args.avalanche or args.plot:
        matrix = avalanche_matrix(lut.lut, args.batch_size)
        print("\n=== Avalanche per flipped input bit ===")
        print(avalanche_summary(matrix).to_string(index=False))
        if args.plot:
            plot_avalanche(matrix, args.plot, f"Keccak-f[25], {lut.nr_rounds} rounds: bit flip probabilities")
            print(f"Plot saved as {args.plot}")
    print("Elapsed: %.2f s" % (time.time() - t0))


if __name__ == "__main__":
    main()
