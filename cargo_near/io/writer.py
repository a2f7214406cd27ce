"""
Writer — parse, stamp and serialize the ABI document.

Layout::

    <target>/near[/<package>]/abi.json

Serialization is ``indent=2, sort_keys=True`` plus a trailing newline,
so reading a written file and writing it again is byte-identical.
"""
import contextlib
import json
import os
from pathlib import Path
from typing import Any, Dict

from cargo_near.errors import DocumentParseError, DocumentWriteError
from cargo_near.io.schema import METADATA_KEY, AbiMetadata


def parse_abi_document(raw: bytes) -> Dict[str, Any]:
    """Decode the aggregator's stdout into a JSON object."""
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DocumentParseError(f"ABI output is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise DocumentParseError(
            f"ABI output must be a JSON object, got {type(document).__name__}"
        )
    return document


def stamp_metadata(document: Dict[str, Any], metadata: AbiMetadata) -> Dict[str, Any]:
    """Copy of *document* whose metadata is replaced by *metadata*."""
    stamped = dict(document)
    stamped[METADATA_KEY] = metadata.to_json()
    return stamped


def dumps_abi(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, sort_keys=True) + "\n"


def write_abi(document: Dict[str, Any], path: Path) -> Path:
    """
    Write *document* to *path*, creating parent directories.

    Returns *path*.
    """
    try:
        content = dumps_abi(document)
    except (TypeError, ValueError) as e:
        raise DocumentWriteError(f"ABI document is not serializable: {e}") from e

    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        raise DocumentWriteError(f"Cannot write {path}: {e}") from e
    return path
