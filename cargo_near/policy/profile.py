"""
Profile — ABI export policy knobs.

Core modules take every naming convention and tunable from here so that
changing the symbol prefix or the generated package layout is a profile
change, not a code change.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class AbiProfile:
    """Describes how ABI entry points are found and aggregated."""

    # Identity
    profile_id: str

    # Entry-point naming convention in the compiled contract
    symbol_prefix: str = "__near_abi_"

    # Crate that defines AbiRoot and AbiRoot::combine
    abi_runtime_crate: str = "near-sdk"

    # Root manifest edits
    added_crate_type: str = "rlib"
    release_lto: bool = False

    # Generated aggregator package
    metadata_package_name: str = "metadata-gen"
    metadata_package_path: str = ".near/metadata-gen"

    # Output
    output_subdir: str = "near"
    abi_file_name: str = "abi.json"

    # Snapshot temp dir prefix
    temp_prefix: str = ".cargo-near_"

    # Zero discovered entry points is fatal when set
    require_entry_points: bool = False

    @classmethod
    def v0(cls) -> "AbiProfile":
        """The default near-sdk profile."""
        return cls(profile_id="near-sdk-abi-v0")
