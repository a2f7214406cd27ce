"""
Manifest — parsed ``Cargo.toml`` plus named, composable edits.

Edits are pure functions over the parsed TOML table: each returns a new
table and leaves its input untouched, and applying an edit whose effect
is already present changes nothing. ``Manifest.write`` only ever
targets a path inside the snapshot; the original file is opened for
reading exactly once, in ``Manifest.load``.
"""
from __future__ import annotations

import copy
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import tomli_w

from cargo_near.errors import ManifestResolutionError, SnapshotIoError

logger = logging.getLogger(__name__)

Table = Dict[str, Any]

_DEPENDENCY_SECTIONS = ("dependencies", "dev-dependencies", "build-dependencies")


@dataclass(frozen=True)
class ManifestEdit:
    """A named transformation ``Table -> Table``."""

    name: str
    fn: Callable[[Table], Table]

    def __call__(self, toml: Table) -> Table:
        return self.fn(copy.deepcopy(toml))


def compose(*edits: ManifestEdit) -> ManifestEdit:
    """Apply *edits* left to right as a single edit."""
    def apply_all(toml: Table) -> Table:
        for edit in edits:
            toml = edit(toml)
        return toml

    return ManifestEdit(" + ".join(e.name for e in edits), apply_all)


def _table(parent: Table, key: str) -> Table:
    value = parent.setdefault(key, {})
    if not isinstance(value, dict):
        raise ManifestResolutionError(f"[{key}] should be a table, got {type(value).__name__}")
    return value


def _array(parent: Table, key: str, section: str) -> list:
    value = parent.setdefault(key, [])
    if not isinstance(value, list):
        raise ManifestResolutionError(f"{section}.{key} should be an array")
    return value


# ── Edits ────────────────────────────────────────────────────────────────────

def with_added_crate_type(crate_type: str) -> ManifestEdit:
    """``[lib] crate-type`` gains *crate_type* (once)."""
    def edit(toml: Table) -> Table:
        crate_types = _array(_table(toml, "lib"), "crate-type", "[lib]")
        if crate_type not in crate_types:
            crate_types.append(crate_type)
        return toml

    return ManifestEdit(f"add crate-type {crate_type}", edit)


def with_profile_release_lto(enabled: bool) -> ManifestEdit:
    """``[profile.release] lto = enabled``."""
    def edit(toml: Table) -> Table:
        _table(_table(toml, "profile"), "release")["lto"] = enabled
        return toml

    return ManifestEdit(f"set profile.release.lto={enabled}", edit)


def with_workspace_member(member_path: str) -> ManifestEdit:
    """``[workspace] members`` gains *member_path* (once)."""
    def edit(toml: Table) -> Table:
        members = _array(_table(toml, "workspace"), "members", "[workspace]")
        if member_path not in members:
            members.append(member_path)
        return toml

    return ManifestEdit(f"add workspace member {member_path}", edit)


def with_rewritten_relative_paths(
    base_dir: Path,
    exclude_deps: Iterable[str] = (),
) -> ManifestEdit:
    """
    Make every relative path in the manifest absolute against *base_dir*.

    Covers ``[package] build`` (default ``build.rs``), ``[lib] path``
    (default ``src/lib.rs``), ``[[bin]] path`` (default ``src/main.rs``) and
    ``path`` dependencies in every dependency section, including
    ``[target.<cfg>.*]``, ``[workspace.dependencies]`` and ``[patch.<source>]``.
    Dependencies named in *exclude_deps* (other workspace members) keep their
    relative paths so they resolve to the snapshot copies.
    """
    exclude = set(exclude_deps)

    def to_absolute(value_id: str, existing: Any) -> Any:
        if not isinstance(existing, str):
            return existing
        path = Path(existing)
        if path.is_absolute():
            return existing
        absolute = str(base_dir / path)
        logger.debug("Rewriting %s to '%s'", value_id, absolute)
        return absolute

    def rewrite_target(table: Any, section: str, default: str) -> None:
        if not isinstance(table, dict):
            return
        if "path" not in table and not (base_dir / default).exists():
            return
        table["path"] = to_absolute(f"[{section}]/path", table.get("path", default))

    def rewrite_deps(deps: Any) -> None:
        if not isinstance(deps, dict):
            return
        for name, dep in deps.items():
            if name in exclude or not isinstance(dep, dict):
                continue
            if "path" in dep:
                dep["path"] = to_absolute(f"dependency {name}", dep["path"])

    def edit(toml: Table) -> Table:
        package = toml.get("package")
        if isinstance(package, dict):
            # cargo picks up build.rs next to the manifest unless told otherwise
            if "build" not in package and (base_dir / "build.rs").exists():
                package["build"] = "build.rs"
            if isinstance(package.get("build"), str):
                package["build"] = to_absolute("[package]/build", package["build"])

        if "lib" in toml:
            rewrite_target(toml["lib"], "lib", "src/lib.rs")

        bins = toml.get("bin")
        if isinstance(bins, list):
            for b in bins:
                rewrite_target(b, "[bin]", "src/main.rs")

        for section in _DEPENDENCY_SECTIONS:
            rewrite_deps(toml.get(section))

        targets = toml.get("target")
        if isinstance(targets, dict):
            for cfg in targets.values():
                if isinstance(cfg, dict):
                    for section in _DEPENDENCY_SECTIONS:
                        rewrite_deps(cfg.get(section))

        workspace = toml.get("workspace")
        if isinstance(workspace, dict):
            rewrite_deps(workspace.get("dependencies"))

        patches = toml.get("patch")
        if isinstance(patches, dict):
            for source in patches.values():
                rewrite_deps(source)
        return toml

    return ManifestEdit(f"rewrite relative paths against {base_dir}", edit)


# ── Manifest ─────────────────────────────────────────────────────────────────

class Manifest:
    """One member's ``Cargo.toml``: where it came from and its current table."""

    def __init__(self, path: Path, toml: Table):
        self.path = path
        self.toml = toml

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        try:
            with open(path, "rb") as f:
                toml = tomllib.load(f)
        except OSError as e:
            raise ManifestResolutionError(f"Cannot read manifest {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ManifestResolutionError(f"Invalid TOML in {path}: {e}") from e
        return cls(Path(path), toml)

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def package_name(self) -> Optional[str]:
        package = self.toml.get("package")
        if isinstance(package, dict):
            return package.get("name")
        return None

    def dependency(self, name: str) -> Optional[Any]:
        deps = self.toml.get("dependencies")
        if isinstance(deps, dict):
            return deps.get(name)
        return None

    def apply(self, *edits: ManifestEdit) -> "Manifest":
        for edit in edits:
            logger.debug("Manifest %s: %s", self.path, edit.name)
            self.toml = edit(self.toml)
        return self

    def dumps(self) -> str:
        return tomli_w.dumps(self.toml)

    def write(self, dest: Path) -> Path:
        """Serialize to *dest*, which must not be the original manifest."""
        if dest.resolve() == self.path.resolve():
            raise SnapshotIoError(f"Refusing to overwrite original manifest {self.path}")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(self.dumps(), encoding="utf-8")
        except OSError as e:
            raise SnapshotIoError(f"Cannot write manifest {dest}: {e}") from e
        return dest
