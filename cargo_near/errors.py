"""
Errors — one exception type per pipeline failure.

Every stage raises a subclass of ``CargoNearError``; the CLI turns any of
them into ``ERROR: <message>`` and exit code 1.
"""
from typing import List, Optional


class CargoNearError(Exception):
    """Base class for all pipeline failures."""


class ManifestResolutionError(CargoNearError):
    """The Cargo manifest or its metadata could not be resolved."""


class BuildProcessUnavailable(CargoNearError):
    """The build tool could not be spawned at all."""

    def __init__(self, command: str, os_error: OSError):
        self.command = command
        self.os_error = os_error
        super().__init__(f"Error executing `{command}`: {os_error}")


class BuildProcessFailed(CargoNearError):
    """The build tool ran and exited with a non-zero status."""

    def __init__(self, command: str, exit_code: Optional[int]):
        self.command = command
        self.exit_code = exit_code
        super().__init__(f"`{command}` failed with exit code: {exit_code}")


class NoArtifactProduced(CargoNearError):
    """The contract build produced no shared library."""


class AmbiguousArtifact(CargoNearError):
    """The contract build produced more than one shared library."""

    def __init__(self, candidates: List[str]):
        self.candidates = list(candidates)
        super().__init__(
            "Compilation resulted in more than one shared library target "
            f"file: {self.candidates}"
        )


class UnrecognizedBinaryFormat(CargoNearError):
    """The artifact is not an ELF, Mach-O or PE object."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        msg = f"Unrecognized object file format: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class SnapshotIoError(CargoNearError):
    """Staging the temporary workspace failed."""


class DocumentParseError(CargoNearError):
    """The aggregator output is not a JSON object."""


class DocumentWriteError(CargoNearError):
    """abi.json could not be written."""


class NoAbiEntryPoints(CargoNearError):
    """No ABI entry points were found and the profile requires at least one."""
