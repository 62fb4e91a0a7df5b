import shutil
import subprocess

import matplotlib
import pytest

from KeccakF25_LUT import KeccakF25LUT, LUTStore

matplotlib.use("Agg")


class MemoryLUTStore(LUTStore):
    """In-memory store recording every load and save."""

    def __init__(self, tables=None):
        self.tables = dict(tables or {})
        self.loads = []
        self.saves = []

    def load(self, key):
        self.loads.append(key)
        return self.tables.get(key)

    def save(self, key, table):
        self.saves.append(key)
        self.tables[key] = table


@pytest.fixture
def memory_store():
    return MemoryLUTStore()


@pytest.fixture(scope="session")
def oracle():
    """Keccak-f[25] tables by number of rounds, each built once per session."""
    store = MemoryLUTStore()
    tables = {}

    def get(nr_rounds):
        if nr_rounds not in tables:
            tables[nr_rounds] = KeccakF25LUT(nr_rounds, store).lut
        return tables[nr_rounds]

    return get


@pytest.fixture(scope="session")
def c_compiler():
    for name in ("cc", "gcc", "clang"):
        path = shutil.which(name)
        if path:
            return path
    pytest.skip("no C compiler on PATH")


@pytest.fixture
def build_c(c_compiler, tmp_path):
    """Compile `unit` (generated code, as keccak_gen.h) with the harness `main_source`."""

    def build(unit, main_source, defines=(), name="harness"):
        (tmp_path / "keccak_gen.h").write_text(unit)
        source = tmp_path / f"{name}.c"
        source.write_text(main_source)
        exe = tmp_path / name
        cmd = [c_compiler, "-O2", "-std=c99", "-I", str(tmp_path)]
        cmd += [f"-D{d}" for d in defines]
        cmd += ["-o", str(exe), str(source)]
        subprocess.run(cmd, check=True, capture_output=True)
        return exe

    return build


@pytest.fixture
def run_c():
    def run(exe, *args, timeout=900):
        subprocess.run([str(exe)] + [str(a) for a in args], check=True, timeout=timeout)

    return run
