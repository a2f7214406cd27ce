"""
cargo_near — ABI export for NEAR smart-contract Cargo projects.

Builds the contract, scans its shared library for ABI entry points, stages
a throwaway copy of the workspace manifests with a generated
``metadata-gen`` package, runs it and writes ``abi.json``.
The contract's own source tree is never written to.
"""

__version__ = "0.1.0"
PACKAGE_NAME = "cargo_near"
ABI_FILE = "abi.json"
