"""
Project loader — resolve a contract's identity from its Cargo manifest.

Runs ``cargo metadata`` once and keeps the parts the pipeline needs:
the dependency graph snapshot, the root package and the directory
all build outputs (and ``abi.json``) go to.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from cargo_near.core.process import ProcessInvoker
from cargo_near.errors import CargoNearError, ManifestResolutionError
from cargo_near.policy.profile import AbiProfile

logger = logging.getLogger(__name__)

MANIFEST_FILE = "Cargo.toml"


# ── Manifest path ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ManifestPath:
    """Absolute path to an existing ``Cargo.toml``."""

    path: Path

    @classmethod
    def resolve(cls, path: Optional[Path] = None) -> "ManifestPath":
        """Validate *path*, defaulting to ``./Cargo.toml``."""
        p = Path(path) if path is not None else Path(MANIFEST_FILE)
        if p.name != MANIFEST_FILE:
            raise ManifestResolutionError(
                f"The manifest-path must be a path to a {MANIFEST_FILE} file, got {p}"
            )
        if not p.is_file():
            raise ManifestResolutionError(f"Manifest not found: {p}")
        return cls(p.resolve())

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def cargo_arg(self) -> str:
        return f"--manifest-path={self.path}"

    def __str__(self) -> str:
        return str(self.path)


# ── cargo metadata models ────────────────────────────────────────────────────

class CargoDependency(BaseModel):
    name: str
    req: str = "*"
    kind: Optional[str] = None
    rename: Optional[str] = None
    path: Optional[str] = None


class CargoPackage(BaseModel):
    id: str
    name: str
    version: str
    authors: List[str] = Field(default_factory=list)
    manifest_path: str
    dependencies: List[CargoDependency] = Field(default_factory=list)


class CargoResolve(BaseModel):
    root: Optional[str] = None


class CargoMetadata(BaseModel):
    """The subset of ``cargo metadata --format-version 1`` we rely on."""

    packages: List[CargoPackage]
    workspace_members: List[str]
    workspace_root: str
    target_directory: str
    resolve: Optional[CargoResolve] = None

    def package_by_id(self, package_id: str) -> Optional[CargoPackage]:
        for package in self.packages:
            if package.id == package_id:
                return package
        return None

    def members(self) -> Dict[str, CargoPackage]:
        """Workspace members keyed by package id."""
        out: Dict[str, CargoPackage] = {}
        for member_id in self.workspace_members:
            package = self.package_by_id(member_id)
            if package is None:
                raise ManifestResolutionError(
                    f"Workspace member {member_id} missing from cargo metadata packages"
                )
            out[member_id] = package
        return out


# ── Descriptor ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectDescriptor:
    """Everything the pipeline knows about the contract project."""

    manifest_path: ManifestPath
    metadata: CargoMetadata
    root_package: CargoPackage
    target_directory: Path

    @property
    def workspace_root(self) -> Path:
        return Path(self.metadata.workspace_root)


def _output_directory(
    manifest_path: ManifestPath,
    metadata: CargoMetadata,
    root_package: CargoPackage,
    profile: AbiProfile,
) -> Path:
    target = Path(metadata.target_directory) / profile.output_subdir
    workspace_root = Path(metadata.workspace_root).resolve()
    if manifest_path.directory.resolve() != workspace_root:
        # Contract is one package of a larger workspace: keep its outputs apart
        target = target / root_package.name.replace("-", "_")
    return target


def parse_metadata(raw: bytes) -> CargoMetadata:
    try:
        return CargoMetadata.model_validate(json.loads(raw))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise ManifestResolutionError(f"Unreadable cargo metadata output: {e}") from e


def load_project(
    manifest_path: ManifestPath,
    invoker: ProcessInvoker,
    profile: AbiProfile | None = None,
) -> ProjectDescriptor:
    """
    Run ``cargo metadata`` for *manifest_path* and build the descriptor.

    Raises
    ------
    ManifestResolutionError
        If cargo cannot resolve the manifest or the root package.
    """
    if profile is None:
        profile = AbiProfile.v0()

    logger.info("Fetching cargo metadata for %s", manifest_path)
    try:
        raw = invoker.invoke_cargo(
            "metadata",
            ["--format-version", "1", manifest_path.cargo_arg],
            working_dir=manifest_path.directory,
        )
    except CargoNearError as e:
        raise ManifestResolutionError(f"Error invoking `cargo metadata`: {e}") from e

    metadata = parse_metadata(raw)

    root_id = metadata.resolve.root if metadata.resolve else None
    if root_id is None:
        raise ManifestResolutionError("Cannot infer the root project id")

    root_package = metadata.package_by_id(root_id)
    if root_package is None:
        raise ManifestResolutionError(
            f"Root package {root_id} not found in the `cargo metadata` output"
        )

    target_directory = _output_directory(manifest_path, metadata, root_package, profile)
    logger.debug(
        "Root package %s %s, output directory %s",
        root_package.name, root_package.version, target_directory,
    )

    return ProjectDescriptor(
        manifest_path=manifest_path,
        metadata=metadata,
        root_package=root_package,
        target_directory=target_directory,
    )
