"""
Schema — Pydantic models for the ABI metadata and the run result.

The ABI document itself is owned by the contract's ABI runtime
(``near-sdk``); it stays a plain JSON object here and only its
``metadata`` key is replaced.
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cargo_near.core.project import CargoPackage

METADATA_KEY = "metadata"


class AbiMetadata(BaseModel):
    """Contract metadata stamped into the ABI document.

    Unknown keyword arguments are kept as extension fields and serialized
    next to the named ones.
    """

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    version: Optional[str] = None
    authors: List[str] = Field(default_factory=list)

    @classmethod
    def from_package(cls, package: CargoPackage) -> "AbiMetadata":
        return cls(
            name=package.name,
            version=package.version,
            authors=list(package.authors),
        )

    def to_json(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        if not data.get("authors"):
            data.pop("authors", None)
        return data


class AbiResult(BaseModel):
    """Outcome of a successful ABI export."""

    dest_abi: Path
    entry_points: List[str] = Field(default_factory=list)
