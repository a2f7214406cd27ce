"""
Symbol extractor — enumerate a shared library's exported symbols.

Responsibilities:
  - Detect the object format from magic bytes (ELF, Mach-O, PE).
  - List exported (global, defined) symbol names.
  - Select the ABI entry points by name prefix.

ELF is read with pyelftools, Mach-O with macholib, PE with pefile.
"""
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Tuple

import pefile
from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection
from macholib.mach_o import CPU_TYPE_NAMES
from macholib.MachO import MachO
from macholib.SymbolTable import SymbolTable

from cargo_near.errors import UnrecognizedBinaryFormat

logger = logging.getLogger(__name__)

EntryPointSet = FrozenSet[str]

_MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce", b"\xce\xfa\xed\xfe",   # 32-bit
    b"\xfe\xed\xfa\xcf", b"\xcf\xfa\xed\xfe",   # 64-bit
    b"\xca\xfe\xba\xbe", b"\xbe\xba\xfe\xca",   # fat
}


class ObjectFormat(str, Enum):
    ELF = "ELF"
    MACHO = "Mach-O"
    PE = "PE"


@dataclass(frozen=True)
class ObjectSymbols:
    """Exported symbols of one object file."""

    path: str
    format: ObjectFormat
    arch: str
    symbols: List[str] = field(default_factory=list)


def detect_format(path: Path) -> ObjectFormat:
    """Identify the object format of *path* from its first bytes."""
    with open(path, "rb") as f:
        magic = f.read(4)
    if magic == b"\x7fELF":
        return ObjectFormat.ELF
    if magic in _MACHO_MAGICS:
        return ObjectFormat.MACHO
    if magic[:2] == b"MZ":
        return ObjectFormat.PE
    raise UnrecognizedBinaryFormat(str(path), "unknown magic bytes")


def _read_elf(path: Path) -> Tuple[str, List[str]]:
    names: List[str] = []
    with open(path, "rb") as f:
        try:
            elffile = ELFFile(f)
            machine = elffile.header["e_machine"]
            section = elffile.get_section_by_name(".dynsym")
            if not isinstance(section, SymbolTableSection):
                section = elffile.get_section_by_name(".symtab")
            if isinstance(section, SymbolTableSection):
                for sym in section.iter_symbols():
                    if sym["st_info"]["bind"] not in ("STB_GLOBAL", "STB_WEAK"):
                        continue
                    if sym["st_shndx"] == "SHN_UNDEF" or not sym.name:
                        continue
                    names.append(sym.name)
        except (ELFError, struct.error) as e:
            raise UnrecognizedBinaryFormat(str(path), str(e)) from e
    return str(machine), names


def _read_macho(path: Path) -> Tuple[str, List[str]]:
    try:
        macho = MachO(str(path))
        header = macho.headers[0]
        arch = CPU_TYPE_NAMES.get(header.header.cputype, str(header.header.cputype))
        table = SymbolTable(macho, header=header)
    except (ValueError, struct.error, EOFError) as e:
        raise UnrecognizedBinaryFormat(str(path), str(e)) from e

    names: List[str] = []
    for _nlist, raw in getattr(table, "extdefsyms", []):
        name = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        # Mach-O prefixes C-level names with an underscore
        if name.startswith("_"):
            name = name[1:]
        if name:
            names.append(name)
    return arch, names


def _read_pe(path: Path) -> Tuple[str, List[str]]:
    try:
        pe = pefile.PE(str(path), fast_load=True)
    except pefile.PEFormatError as e:
        raise UnrecognizedBinaryFormat(str(path), str(e)) from e

    try:
        pe.parse_data_directories(
            directories=[pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_EXPORT"]]
        )
        machine = pe.FILE_HEADER.Machine
        arch = pefile.MACHINE_TYPE.get(machine, hex(machine))
        names: List[str] = []
        exports = getattr(pe, "DIRECTORY_ENTRY_EXPORT", None)
        if exports is not None:
            for exp in exports.symbols:
                if exp.name:
                    names.append(exp.name.decode("utf-8", errors="replace"))
    finally:
        pe.close()
    return str(arch), names


_READERS = {
    ObjectFormat.ELF: _read_elf,
    ObjectFormat.MACHO: _read_macho,
    ObjectFormat.PE: _read_pe,
}


def read_exported_symbols(path: Path) -> ObjectSymbols:
    """
    Open *path* as a native object and list its exported symbols.

    Raises
    ------
    UnrecognizedBinaryFormat
        If *path* does not exist or is not a parseable ELF, Mach-O or PE
        object.
    """
    p = Path(path)
    if not p.exists():
        raise UnrecognizedBinaryFormat(str(p), "file not found")

    fmt = detect_format(p)
    arch, names = _READERS[fmt](p)
    logger.info("Detected %s object for %s at %s", fmt.value, arch, p)
    return ObjectSymbols(path=str(p), format=fmt, arch=arch, symbols=names)


def extract_entry_points(path: Path, prefix: str) -> EntryPointSet:
    """Exported symbol names of *path* that start with *prefix*."""
    obj = read_exported_symbols(path)
    entry_points = frozenset(s for s in obj.symbols if s.startswith(prefix))
    logger.debug("ABI entry points in %s: %s", path, sorted(entry_points))
    return entry_points
