"""
Shared pytest fixtures for cargo_near tests.

Provides:
  - on-the-fly gcc compilation of small shared libraries exporting
    ``__near_abi_*`` symbols (skipped when gcc cannot produce ELF);
  - a throwaway Cargo project on disk (manifest, lib.rs, Cargo.lock);
  - ``FakeCargo``, a ProcessInvoker that answers ``metadata``, ``build``
    and ``run`` without a Rust toolchain and records every call.
"""
import json
import platform
import re
import shutil
import subprocess
import tempfile
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from cargo_near.core.artifact import shared_library_suffix
from cargo_near.core.process import BuildInvocation, ProcessInvoker
from cargo_near.errors import BuildProcessFailed

# Two ABI entry points, one ordinary export and one local symbol that
# carries the prefix but must not be picked up.
ABI_LIB_C = textwrap.dedent("""\
    static int __near_abi_hidden(void) { return 0; }

    int __near_abi_foo(void) { return 1 + __near_abi_hidden(); }

    int __near_abi_bar(void) { return 2; }

    int helper(int x) { return x * 2; }
""")

PLAIN_LIB_C = textwrap.dedent("""\
    int add(int a, int b) { return a + b; }
""")

CONTRACT_CARGO_TOML = textwrap.dedent("""\
    [package]
    name = "my-contract"
    version = "0.1.0"
    authors = ["Alice <alice@example.com>", "Bob <bob@example.com>"]
    edition = "2021"

    [lib]
    crate-type = ["cdylib"]

    [dependencies]
    near-sdk = { version = "4.1.0", default-features = false, features = ["abi"], optional = false }
    helpers = { path = "../helpers" }
    serde = "1"

    [profile.release]
    codegen-units = 1
    lto = true
""")

PACKAGE_ID = "my-contract 0.1.0 (path+file:///contract)"


# ── gcc fixtures ─────────────────────────────────────────────────────────────

def _gcc_produces_elf() -> bool:
    if shutil.which("gcc") is None or platform.system() != "Linux":
        return False
    with tempfile.TemporaryDirectory() as tmpdir:
        src = Path(tmpdir) / "probe.c"
        out = Path(tmpdir) / "libprobe.so"
        src.write_text("int probe(void) { return 0; }")
        try:
            subprocess.run(
                ["gcc", "-shared", "-fPIC", str(src), "-o", str(out)],
                check=True,
                capture_output=True,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return out.exists() and out.read_bytes()[:4] == b"\x7fELF"


def _compile_shared(source: str, output: Path) -> Path:
    src_file = output.with_suffix(".c")
    src_file.write_text(source)
    subprocess.run(
        ["gcc", "-shared", "-fPIC", "-O0", str(src_file), "-o", str(output)],
        check=True,
        capture_output=True,
        timeout=30,
    )
    return output


@pytest.fixture(scope="session")
def gcc_ok():
    """Skip tests if gcc cannot build ELF shared libraries here."""
    if not _gcc_produces_elf():
        pytest.skip("gcc producing ELF shared libraries is required for these tests")


@pytest.fixture(scope="session")
def fixtures_dir(tmp_path_factory, gcc_ok) -> Path:
    return tmp_path_factory.mktemp("so_fixtures")


@pytest.fixture(scope="session")
def abi_library(fixtures_dir) -> Path:
    """Shared library exporting __near_abi_foo and __near_abi_bar."""
    return _compile_shared(ABI_LIB_C, fixtures_dir / "libmy_contract.so")


@pytest.fixture(scope="session")
def plain_library(fixtures_dir) -> Path:
    """Shared library without any ABI entry points."""
    return _compile_shared(PLAIN_LIB_C, fixtures_dir / "libplain.so")


@pytest.fixture
def not_an_object(tmp_path) -> Path:
    p = tmp_path / "libbogus.so"
    p.write_bytes(b"This is not an object file.\x00\x00\x00")
    return p


# ── Cargo project fixture ───────────────────────────────────────────────────

@pytest.fixture
def contract_project(tmp_path) -> Path:
    """A contract crate at <tmp>/contract with a path dependency next to it."""
    project = tmp_path / "contract"
    (project / "src").mkdir(parents=True)
    (project / "Cargo.toml").write_text(CONTRACT_CARGO_TOML)
    (project / "src" / "lib.rs").write_text("pub fn hello() {}\n")
    (project / "Cargo.lock").write_text("# lockfile\nversion = 3\n")
    (tmp_path / "helpers").mkdir()
    return project


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Relative path → bytes for every file under *root*."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def cargo_metadata_json(project: Path, package_id: str = PACKAGE_ID) -> dict:
    return {
        "packages": [
            {
                "id": package_id,
                "name": "my-contract",
                "version": "0.1.0",
                "authors": ["Alice <alice@example.com>", "Bob <bob@example.com>"],
                "manifest_path": str(project / "Cargo.toml"),
                "dependencies": [
                    {"name": "near-sdk", "req": "^4.1.0", "kind": None},
                ],
            }
        ],
        "workspace_members": [package_id],
        "workspace_root": str(project),
        "target_directory": str(project / "target"),
        "resolve": {"root": package_id},
    }


def build_output(filenames: List[str], package_id: str = PACKAGE_ID) -> bytes:
    lines = [
        {"reason": "compiler-artifact", "package_id": "near-sdk 4.1.0",
         "filenames": ["/deps/libnear_sdk.rlib"]},
        {"reason": "build-script-executed", "package_id": package_id},
        {"reason": "compiler-artifact", "package_id": package_id,
         "filenames": filenames},
        {"reason": "build-finished", "success": True},
    ]
    return ("\n".join(json.dumps(line) for line in lines) + "\n").encode()


# ── Fake cargo ───────────────────────────────────────────────────────────────

_EXTERN_FN = re.compile(
    r"^\s*fn (__near_abi_\w+)\(\) -> near_sdk::__private::AbiRoot;$", re.MULTILINE
)


class FakeCargo(ProcessInvoker):
    """
    Answers cargo subcommands from canned data.

    ``run`` reads the generated ``main.rs`` out of the snapshot and returns
    an ABI document with one function per declared entry point, so tests
    observe exactly what was generated.
    """

    def __init__(
        self,
        project: Path,
        artifacts: Optional[List[str]] = None,
        metadata: Optional[dict] = None,
        fail_on: Optional[str] = None,
    ):
        super().__init__(cargo="fake-cargo")
        self.project = project
        self.artifacts = artifacts if artifacts is not None else []
        self.metadata = metadata or cargo_metadata_json(project)
        self.fail_on = fail_on
        self.calls: List[BuildInvocation] = []
        self.generated_main_rs: Optional[str] = None
        self.snapshot_files: Dict[str, bytes] = {}

    def invoke(self, invocation: BuildInvocation) -> bytes:
        self.calls.append(invocation)
        if invocation.subcommand == self.fail_on:
            raise BuildProcessFailed(self.describe(invocation), 101)
        if invocation.subcommand == "metadata":
            return json.dumps(self.metadata).encode()
        if invocation.subcommand == "build":
            return build_output(self.artifacts)
        if invocation.subcommand == "run":
            return self._run(invocation)
        raise AssertionError(f"unexpected cargo subcommand {invocation.subcommand}")

    def _run(self, invocation: BuildInvocation) -> bytes:
        workdir = invocation.working_dir
        assert workdir is not None
        self.snapshot_files = snapshot_tree(workdir)
        main_rs = (workdir / ".near" / "metadata-gen" / "main.rs").read_text()
        self.generated_main_rs = main_rs
        functions = [{"name": name[len("__near_abi_"):]} for name in _EXTERN_FN.findall(main_rs)]
        document = {
            "schema_version": "0.1.0",
            "metadata": {},
            "body": {"functions": functions, "root_schema": {}},
        }
        return json.dumps(document, indent=2).encode()

    def subcommands(self) -> List[str]:
        return [c.subcommand for c in self.calls]


@pytest.fixture
def so_suffix() -> str:
    return shared_library_suffix()
