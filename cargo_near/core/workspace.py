"""
Workspace snapshot — a disposable, edited copy of the project's manifests.

Only ``Cargo.toml`` files (and ``Cargo.lock``) are copied; every relative
path inside them is rewritten to point back at the original sources, so
cargo builds the real code through manifests that live in a temp dir.

Typical use::

    workspace = Workspace(descriptor, profile)
    workspace.with_root_package_manifest(
        with_added_crate_type("rlib"),
        with_profile_release_lto(False),
    )
    workspace.with_metadata_gen_package(entry_points)
    with workspace.using_temp() as root_manifest:
        ...   # build inside the snapshot

The temp dir is removed when the ``with`` block exits, however it exits.
"""
from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Tuple

from cargo_near.core.aggregator import generate_package
from cargo_near.core.manifest import (
    Manifest,
    ManifestEdit,
    with_rewritten_relative_paths,
    with_workspace_member,
)
from cargo_near.core.project import CargoPackage, ManifestPath, ProjectDescriptor
from cargo_near.errors import (
    CargoNearError,
    ManifestResolutionError,
    SnapshotIoError,
)
from cargo_near.policy.profile import AbiProfile

logger = logging.getLogger(__name__)


class Workspace:
    """Every workspace member's manifest, ready to be edited and staged."""

    def __init__(self, descriptor: ProjectDescriptor, profile: AbiProfile | None = None):
        self.descriptor = descriptor
        self.profile = profile or AbiProfile.v0()
        self.workspace_root = descriptor.workspace_root
        self.root_package_id = descriptor.root_package.id

        self.members: Dict[str, Tuple[CargoPackage, Manifest]] = {}
        for package_id, package in descriptor.metadata.members().items():
            self.members[package_id] = (package, Manifest.load(Path(package.manifest_path)))

        if self.root_package_id not in self.members:
            raise ManifestResolutionError("The root package should be a workspace member")

        self._metadata_entry_points: Optional[Tuple[str, ...]] = None
        self.last_temp_dir: Optional[Path] = None

    @property
    def root_manifest(self) -> Manifest:
        return self.members[self.root_package_id][1]

    # -----------------------------------------------------------------
    # Edits
    # -----------------------------------------------------------------

    def with_root_package_manifest(self, *edits: ManifestEdit) -> "Workspace":
        """Apply *edits* to the root package's manifest only."""
        self.root_manifest.apply(*edits)
        return self

    def with_metadata_gen_package(self, entry_points: Iterable[str]) -> "Workspace":
        """Register the aggregator as a member and generate it on write."""
        self.root_manifest.apply(with_workspace_member(self.profile.metadata_package_path))
        self._metadata_entry_points = tuple(sorted(set(entry_points)))
        return self

    # -----------------------------------------------------------------
    # Staging
    # -----------------------------------------------------------------

    def _snapshot_path(self, target: Path, package: CargoPackage) -> Path:
        original = Path(package.manifest_path)
        try:
            relative = original.relative_to(self.workspace_root)
        except ValueError as e:
            raise SnapshotIoError(
                f"Member manifest {original} lies outside workspace root {self.workspace_root}"
            ) from e
        return target / relative

    def _generate_metadata_package(self, root_snapshot: Path) -> None:
        root = self.root_manifest
        contract_package = root.package_name or self.descriptor.root_package.name
        runtime_spec = root.dependency(self.profile.abi_runtime_crate)
        if runtime_spec is None:
            raise ManifestResolutionError(
                f"`{self.profile.abi_runtime_crate}` dependency not found in {root.path}"
            )
        generate_package(
            target_dir=root_snapshot.parent / self.profile.metadata_package_path,
            contract_manifest_dir=root_snapshot.parent,
            contract_package=contract_package,
            runtime_spec=runtime_spec,
            entry_points=self._metadata_entry_points or (),
            profile=self.profile,
        )

    def write(self, target: Path) -> Dict[str, ManifestPath]:
        """
        Mirror every member manifest under *target*.

        Returns the snapshot manifest path of each member, by package id.
        """
        member_names = [package.name for package, _ in self.members.values()]
        written: Dict[str, ManifestPath] = {}

        for package_id, (package, manifest) in self.members.items():
            dest = self._snapshot_path(target, package)
            manifest.apply(
                with_rewritten_relative_paths(manifest.directory, exclude_deps=member_names)
            )
            manifest.write(dest)
            written[package_id] = ManifestPath(dest)
            logger.debug("Staged %s -> %s", manifest.path, dest)

        if self._metadata_entry_points is not None:
            self._generate_metadata_package(written[self.root_package_id].path)

        return written

    def _copy_lockfile(self, target: Path, root_dir: Path) -> None:
        """
        Copy the workspace lockfile to the snapshot root and next to the
        root package's manifest, where cargo looks for it when building
        a non-root member on its own.
        """
        src_lockfile = self.workspace_root / "Cargo.lock"
        if not src_lockfile.exists():
            return
        for dest_dir in dict.fromkeys([target, root_dir]):
            try:
                shutil.copyfile(src_lockfile, dest_dir / "Cargo.lock")
            except OSError as e:
                raise SnapshotIoError(f"Cannot copy {src_lockfile}: {e}") from e

    @contextlib.contextmanager
    def using_temp(self) -> Iterator[ManifestPath]:
        """
        Stage the edited workspace in a fresh temp dir and yield the root
        package's snapshot manifest.

        The temp dir is deleted on exit whether the body returns or raises;
        a failed deletion is logged and never replaces the body's outcome.
        """
        try:
            tmp_dir = Path(tempfile.mkdtemp(prefix=self.profile.temp_prefix))
        except OSError as e:
            raise SnapshotIoError(f"Cannot create temporary workspace: {e}") from e
        self.last_temp_dir = tmp_dir
        logger.debug("Using temp workspace at '%s'", tmp_dir)

        try:
            try:
                new_paths = self.write(tmp_dir)
                self._copy_lockfile(tmp_dir, new_paths[self.root_package_id].directory)
            except CargoNearError:
                raise
            except OSError as e:
                raise SnapshotIoError(f"Cannot stage workspace in {tmp_dir}: {e}") from e
            yield new_paths[self.root_package_id]
        finally:
            _remove_tree(tmp_dir)


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("Failed to remove temp workspace %s: %s", path, e)
    else:
        logger.debug("Removed temp workspace %s", path)
