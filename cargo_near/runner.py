"""
ABI runner — top-level orchestration: Cargo.toml → abi.json.

This module ties project loading, the contract build, symbol scanning,
the workspace snapshot and the aggregator run together into a single
``run_abi`` function that can be called from the CLI or programmatically.
"""
from __future__ import annotations

import argparse
import logging
import platform
import signal
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

from cargo_near import __version__, config
from cargo_near.config import Settings
from cargo_near.core.artifact import compile_project, target_dir_arg
from cargo_near.core.manifest import with_added_crate_type, with_profile_release_lto
from cargo_near.core.process import ProcessInvoker
from cargo_near.core.project import ManifestPath, ProjectDescriptor, load_project
from cargo_near.core.symbols import extract_entry_points
from cargo_near.core.workspace import Workspace
from cargo_near.errors import CargoNearError, NoAbiEntryPoints
from cargo_near.io.schema import AbiMetadata, AbiResult
from cargo_near.io.writer import parse_abi_document, stamp_metadata, write_abi
from cargo_near.policy.profile import AbiProfile

logger = logging.getLogger(__name__)


# ── Pipeline ─────────────────────────────────────────────────────────────────

def generate_abi(
    descriptor: ProjectDescriptor,
    workspace: Workspace,
    invoker: ProcessInvoker,
    profile: AbiProfile,
) -> Path:
    """Run the staged aggregator and write the stamped document."""
    out_path = descriptor.target_directory / profile.abi_file_name

    with workspace.using_temp() as manifest_path:
        stdout = invoker.invoke_cargo(
            "run",
            [
                "--package",
                profile.metadata_package_name,
                manifest_path.cargo_arg,
                target_dir_arg(descriptor),
                "--release",
            ],
            working_dir=manifest_path.directory,
        )

        document = parse_abi_document(stdout)
        metadata = AbiMetadata.from_package(descriptor.root_package)
        write_abi(stamp_metadata(document, metadata), out_path)

    logger.info("ABI written to %s", out_path)
    return out_path


def run_abi(
    manifest_path: Path | None = None,
    profile: AbiProfile | None = None,
    settings: Settings | None = None,
    invoker: ProcessInvoker | None = None,
) -> AbiResult:
    """
    Generate ``abi.json`` for the contract at *manifest_path*.

    Parameters
    ----------
    manifest_path : Path, optional
        Path to the contract's ``Cargo.toml``.  Defaults to ``./Cargo.toml``.
    profile : AbiProfile, optional
        Policy knobs.  Defaults to AbiProfile.v0().
    settings : Settings, optional
        Environment settings (cargo binary).  Defaults to
        ``cargo_near.config.settings``.
    invoker : ProcessInvoker, optional
        Runs cargo.  Built from *settings* when omitted.

    Returns
    -------
    AbiResult
        Path of the written file and the entry points it was built from.

    Raises
    ------
    CargoNearError
        The first failing stage's error.  Nothing is written on failure.
    """
    if profile is None:
        profile = AbiProfile.v0()
    if settings is None:
        settings = config.settings
    if invoker is None:
        invoker = ProcessInvoker(cargo=settings.CARGO)

    # ── Step 1: resolve the project ──────────────────────────────────
    descriptor = load_project(ManifestPath.resolve(manifest_path), invoker, profile)

    # ── Step 2: build the contract and scan its exports ─────────────
    artifact = compile_project(descriptor, invoker)
    entry_points = extract_entry_points(artifact, profile.symbol_prefix)
    if not entry_points:
        if profile.require_entry_points:
            raise NoAbiEntryPoints(
                f"No `{profile.symbol_prefix}*` symbols exported by {artifact}"
            )
        logger.warning(
            "No `%s*` symbols exported by %s; the ABI will be empty",
            profile.symbol_prefix, artifact,
        )

    # ── Step 3: stage the edited workspace and run the aggregator ───
    workspace = Workspace(descriptor, profile)
    workspace.with_root_package_manifest(
        with_added_crate_type(profile.added_crate_type),
        with_profile_release_lto(profile.release_lto),
    )
    workspace.with_metadata_gen_package(entry_points)

    dest_abi = generate_abi(descriptor, workspace, invoker, profile)
    return AbiResult(dest_abi=dest_abi, entry_points=sorted(entry_points))


# ── CLI ──────────────────────────────────────────────────────────────────────

def _git_commit() -> str:
    """Short commit of the checkout this package runs from, or 'unknown'."""
    try:
        r = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=str(Path(__file__).resolve().parent),
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return "unknown"
    if r.returncode != 0:
        return "unknown"
    return r.stdout.strip() or "unknown"


def impl_version() -> str:
    """``<version>-<commit>-<arch>-<os>``."""
    return "-".join([
        __version__,
        _git_commit(),
        platform.machine().lower() or "unknown",
        platform.system().lower() or "unknown",
    ])


def _terminate(signum, frame):
    # Unwind through the snapshot's finally blocks
    raise SystemExit(128 + signum)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cargo near",
        description="Cargo extension for NEAR smart contracts",
    )
    parser.add_argument("--version", action="version", version=impl_version())
    sub = parser.add_subparsers(dest="command", required=True)

    abi = sub.add_parser("abi", help="Generates ABI for the contract")
    abi.add_argument(
        "--manifest-path",
        type=Path,
        default=None,
        help="Path to the `Cargo.toml` of the contract to build",
    )
    abi.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    # `cargo near ...` runs `cargo-near near ...`
    if argv and argv[0] == "near":
        argv = argv[1:]

    args = build_parser().parse_args(argv)
    settings = config.settings

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    signal.signal(signal.SIGTERM, _terminate)

    try:
        result = run_abi(manifest_path=args.manifest_path, settings=settings)
    except CargoNearError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"ABI successfully generated at {result.dest_abi}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
