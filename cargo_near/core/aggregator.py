"""
Aggregator generator — the ``metadata-gen`` package.

A tiny binary crate that links the contract as a library, declares one
``extern "Rust"`` binding per discovered ABI entry point, calls them all,
combines the fragments with ``AbiRoot::combine`` and prints the result
as pretty JSON on stdout.

Source generation goes through :class:`AggregatorSource` so ordering is
decided once (sorted) and rendering stays in one place.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Dict, Iterable, Tuple

import tomli_w

from cargo_near.errors import SnapshotIoError
from cargo_near.policy.profile import AbiProfile

logger = logging.getLogger(__name__)

ABI_ROOT_TYPE = "near_sdk::__private::AbiRoot"

MAIN_RS_TEMPLATE = Template("""\
extern crate contract;

extern "Rust" {
$extern_function_defs}

fn main() -> Result<(), std::io::Error> {
    let root_abis: Vec<$abi_root> = vec![$abi_calls];
    let combined_root_abi = $abi_root::combine(root_abis);
    let contents = serde_json::to_string_pretty(&combined_root_abi)?;
    print!("{}", contents);
    Ok(())
}
""")

# Dependency keys that would make the copied runtime dependency behave
# differently from a plain direct dependency
_STRIPPED_DEPENDENCY_KEYS = ("default-features", "default_features", "features", "optional")


@dataclass(frozen=True)
class AggregatorSource:
    """Declarations and calls for ``main.rs``, in emission order."""

    entry_points: Tuple[str, ...]

    @classmethod
    def from_entry_points(cls, entry_points: Iterable[str]) -> "AggregatorSource":
        return cls(entry_points=tuple(sorted(set(entry_points))))

    @property
    def declarations(self) -> Tuple[str, ...]:
        return tuple(f"fn {name}() -> {ABI_ROOT_TYPE};" for name in self.entry_points)

    @property
    def calls(self) -> Tuple[str, ...]:
        return tuple(f"unsafe {{ {name}() }}" for name in self.entry_points)


def render_main_rs(source: AggregatorSource) -> str:
    extern_function_defs = "".join(f"    {decl}\n" for decl in source.declarations)
    return MAIN_RS_TEMPLATE.substitute(
        extern_function_defs=extern_function_defs,
        abi_calls=", ".join(source.calls),
        abi_root=ABI_ROOT_TYPE,
    )


def runtime_dependency(spec: Any) -> Dict[str, Any]:
    """The contract's ABI runtime dependency as a plain direct dependency."""
    if isinstance(spec, str):
        return {"version": spec}
    if not isinstance(spec, dict):
        raise SnapshotIoError(f"Unsupported dependency specification: {spec!r}")
    dep = dict(spec)
    for key in _STRIPPED_DEPENDENCY_KEYS:
        dep.pop(key, None)
    return dep


def render_cargo_toml(
    contract_package: str,
    contract_path: str,
    runtime_spec: Any,
    profile: AbiProfile,
) -> str:
    manifest = {
        "package": {
            "name": profile.metadata_package_name,
            "version": "0.1.0",
            "edition": "2021",
            "publish": False,
        },
        "bin": [
            {"name": profile.metadata_package_name, "path": "main.rs"},
        ],
        "dependencies": {
            "contract": {"path": contract_path, "package": contract_package},
            "serde_json": "1.0",
            profile.abi_runtime_crate: runtime_dependency(runtime_spec),
        },
    }
    return tomli_w.dumps(manifest)


def generate_package(
    target_dir: Path,
    contract_manifest_dir: Path,
    contract_package: str,
    runtime_spec: Any,
    entry_points: Iterable[str],
    profile: AbiProfile,
) -> Path:
    """
    Write ``Cargo.toml`` and ``main.rs`` of the aggregator into *target_dir*.

    *contract_manifest_dir* is the snapshot directory of the contract's
    manifest; the aggregator depends on it by relative path.
    """
    logger.debug(
        "Generating metadata package for %s in %s", contract_package, target_dir,
    )
    source = AggregatorSource.from_entry_points(entry_points)
    main_rs = render_main_rs(source)
    contract_path = Path(os.path.relpath(contract_manifest_dir, target_dir)).as_posix()
    cargo_toml = render_cargo_toml(contract_package, contract_path, runtime_spec, profile)

    logger.debug("main.rs contents:\n%s", main_rs)
    logger.debug("Cargo.toml contents:\n%s", cargo_toml)

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / "Cargo.toml").write_text(cargo_toml, encoding="utf-8")
        (target_dir / "main.rs").write_text(main_rs, encoding="utf-8")
    except OSError as e:
        raise SnapshotIoError(f"Cannot write metadata package in {target_dir}: {e}") from e
    return target_dir
