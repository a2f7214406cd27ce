"""
Artifact locator — build the contract and find its shared library.

The last ``compiler-artifact`` message of a release build is the contract
crate itself; of its produced files exactly one must be a shared library.
"""
from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import List, Optional

from cargo_near.core.build_events import (
    iter_build_events_from_bytes,
    last_compiler_artifact,
)
from cargo_near.core.process import ProcessInvoker
from cargo_near.core.project import ProjectDescriptor
from cargo_near.errors import AmbiguousArtifact, NoArtifactProduced

logger = logging.getLogger(__name__)

_SHARED_LIBRARY_SUFFIXES = {
    "Linux": ".so",
    "Darwin": ".dylib",
    "Windows": ".dll",
}


def shared_library_suffix(system: Optional[str] = None) -> str:
    """Shared library file suffix for *system* (default: the host)."""
    if system is None:
        system = platform.system()
    return _SHARED_LIBRARY_SUFFIXES.get(system, ".so")


def target_dir_arg(descriptor: ProjectDescriptor) -> str:
    return f"--target-dir={descriptor.target_directory}"


def select_shared_library(filenames: List[str], suffix: str) -> Path:
    """
    Pick the single shared library out of an artifact's produced files.

    Raises
    ------
    NoArtifactProduced
        If none of *filenames* ends with *suffix*.
    AmbiguousArtifact
        If more than one does.
    """
    matches = [f for f in filenames if f.endswith(suffix)]
    if not matches:
        raise NoArtifactProduced(
            f"Compilation resulted in no '{suffix}' target files. "
            "Please check that your project contains a NEAR smart contract."
        )
    if len(matches) > 1:
        raise AmbiguousArtifact(matches)
    return Path(matches[0])


def compile_project(
    descriptor: ProjectDescriptor,
    invoker: ProcessInvoker,
    suffix: Optional[str] = None,
) -> Path:
    """Release-build the contract and return the path of its shared library."""
    if suffix is None:
        suffix = shared_library_suffix()

    stdout = invoker.invoke_cargo(
        "build",
        ["--release", "--message-format=json", target_dir_arg(descriptor)],
        working_dir=descriptor.manifest_path.directory,
    )

    artifact = last_compiler_artifact(iter_build_events_from_bytes(stdout))
    if artifact is None:
        raise NoArtifactProduced(
            "Cargo failed to produce any compilation artifacts. "
            "Please check that your project contains a NEAR smart contract."
        )

    logger.debug("Last compiler artifact %s: %s", artifact.package_id, artifact.filenames)
    path = select_shared_library(artifact.filenames, suffix)
    logger.info("Compiled contract artifact: %s", path)
    return path
