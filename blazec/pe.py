"""Minimal 64-bit PE executables for Windows from raw machine code."""

from __future__ import annotations

import os
import struct
from pathlib import Path

MAX_IMAGE_SIZE = 65536
FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x1000
IMAGE_BASE = 0x140000000
TEXT_RVA = 0x1000
IDATA_RVA = 0x2000
IMAGE_SIZE = 0x3000

IMAGE_DOS_SIGNATURE = 0x5A4D
IMAGE_NT_SIGNATURE = 0x00004550
IMAGE_FILE_MACHINE_AMD64 = 0x8664
IMAGE_SUBSYSTEM_CONSOLE = 3
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000
IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_IAT = 12

DOS_STUB = bytes((
    0x0E, 0x1F, 0xBA, 0x0E, 0x00, 0xB4, 0x09, 0xCD,
    0x21, 0xB8, 0x01, 0x4C, 0xCD, 0x21, 0x54, 0x68,
    0x69, 0x73, 0x20, 0x70, 0x72, 0x6F, 0x67, 0x72,
    0x61, 0x6D, 0x20, 0x63, 0x61, 0x6E, 0x6E, 0x6F,
    0x74, 0x20, 0x62, 0x65, 0x20, 0x72, 0x75, 0x6E,
    0x20, 0x69, 0x6E, 0x20, 0x44, 0x4F, 0x53, 0x20,
    0x6D, 0x6F, 0x64, 0x65, 0x2E, 0x0D, 0x0D, 0x0A,
    0x24, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
))

DLL_NAME = "kernel32.dll"
IMPORTED_FUNCTIONS = ("GetStdHandle", "WriteConsoleA", "ExitProcess")

_DOS_HEADER = struct.Struct("<30HI")
_FILE_HEADER = struct.Struct("<HHIIIHH")
_OPTIONAL_HEADER = struct.Struct("<HBBIIIIIQIIHHHHHHIIIIHHQQQQII" + "II" * 16)
_SECTION_HEADER = struct.Struct("<8sIIIIIIHHI")
_IMPORT_DESCRIPTOR = struct.Struct("<IIIII")
_THUNK = struct.Struct("<Q")

# Layout of the import section, relative to its start.
_INT_OFFSET = 0x40
_IAT_OFFSET = 0x60
_DLL_NAME_OFFSET = 0x80
_NAME_OFFSETS = (0x90, 0xA0, 0xB0)

IMPORT_DATA_SIZE = (
    _IMPORT_DESCRIPTOR.size * 2 + 80 + 20 + _THUNK.size * 8
)


def _align(value: int, alignment: int = FILE_ALIGNMENT) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


def _dos_header() -> bytes:
    fields = [0] * 30
    fields[0] = IMAGE_DOS_SIGNATURE  # e_magic
    fields[1] = 0x90                 # e_cblp
    fields[2] = 0x03                 # e_cp
    fields[4] = 0x04                 # e_cparhdr
    fields[6] = 0xFFFF               # e_maxalloc
    fields[8] = 0xB8                 # e_sp
    fields[12] = 0x40                # e_lfarlc
    return _DOS_HEADER.pack(*fields, _DOS_HEADER.size + len(DOS_STUB))


def _optional_header(aligned_code: int, aligned_import: int, headers_size: int) -> bytes:
    directories = [(0, 0)] * 16
    directories[IMAGE_DIRECTORY_ENTRY_IMPORT] = (IDATA_RVA, _IMPORT_DESCRIPTOR.size * 2)
    directories[IMAGE_DIRECTORY_ENTRY_IAT] = (IDATA_RVA + _INT_OFFSET, _THUNK.size * 4)
    flat = [value for pair in directories for value in pair]
    return _OPTIONAL_HEADER.pack(
        0x20B,               # PE32+
        14, 0,               # linker version
        aligned_code,
        aligned_import,
        0,
        TEXT_RVA,            # entry point
        TEXT_RVA,            # base of code
        IMAGE_BASE,
        SECTION_ALIGNMENT,
        FILE_ALIGNMENT,
        6, 0,                # operating system version
        0, 0,                # image version
        6, 0,                # subsystem version
        0,
        IMAGE_SIZE,
        headers_size,
        0,
        IMAGE_SUBSYSTEM_CONSOLE,
        0x160,               # high entropy VA, NX compatible
        0x100000, 0x1000,    # stack reserve / commit
        0x100000, 0x1000,    # heap reserve / commit
        0,
        16,
        *flat,
    )


def _import_section(size: int) -> bytes:
    section = bytearray(size)
    _IMPORT_DESCRIPTOR.pack_into(
        section, 0,
        IDATA_RVA + _INT_OFFSET, 0, 0,
        IDATA_RVA + _DLL_NAME_OFFSET,
        IDATA_RVA + _IAT_OFFSET,
    )
    thunks = [IDATA_RVA + offset for offset in _NAME_OFFSETS] + [0]
    for table in (_INT_OFFSET, _IAT_OFFSET):
        for index, value in enumerate(thunks):
            _THUNK.pack_into(section, table + index * _THUNK.size, value)
    name = DLL_NAME.encode("ascii")
    section[_DLL_NAME_OFFSET:_DLL_NAME_OFFSET + len(name)] = name
    for offset, function in zip(_NAME_OFFSETS, IMPORTED_FUNCTIONS):
        entry = struct.pack("<H", 0) + function.encode("ascii")
        section[offset:offset + len(entry)] = entry
    return bytes(section)


def build_pe(machine_code: bytes) -> bytes:
    """Return a console PE32+ image with a ``.text`` and an ``.idata`` section."""
    machine_code = bytes(machine_code)
    code_size = len(machine_code)
    aligned_code = _align(code_size)
    aligned_import = _align(IMPORT_DATA_SIZE)
    headers_size = _align(
        _DOS_HEADER.size + len(DOS_STUB) + 4 + _FILE_HEADER.size
        + _OPTIONAL_HEADER.size + _SECTION_HEADER.size * 2
    )
    total_size = headers_size + aligned_code + aligned_import
    if total_size > MAX_IMAGE_SIZE:
        raise ValueError(
            f"PE image of {total_size} bytes exceeds the {MAX_IMAGE_SIZE} byte limit"
        )

    file_header = _FILE_HEADER.pack(
        IMAGE_FILE_MACHINE_AMD64,
        2,
        0, 0, 0,
        _OPTIONAL_HEADER.size,
        IMAGE_FILE_EXECUTABLE_IMAGE | IMAGE_FILE_LARGE_ADDRESS_AWARE,
    )
    text_section = _SECTION_HEADER.pack(
        b".text", code_size, TEXT_RVA, aligned_code, headers_size, 0, 0, 0, 0,
        IMAGE_SCN_CNT_CODE | IMAGE_SCN_MEM_EXECUTE | IMAGE_SCN_MEM_READ,
    )
    idata_section = _SECTION_HEADER.pack(
        b".idata", IMPORT_DATA_SIZE, IDATA_RVA, aligned_import,
        headers_size + aligned_code, 0, 0, 0, 0,
        IMAGE_SCN_CNT_INITIALIZED_DATA | IMAGE_SCN_MEM_READ | IMAGE_SCN_MEM_WRITE,
    )

    headers = b"".join((
        _dos_header(),
        DOS_STUB,
        struct.pack("<I", IMAGE_NT_SIGNATURE),
        file_header,
        _optional_header(aligned_code, aligned_import, headers_size),
        text_section,
        idata_section,
    ))
    return b"".join((
        headers.ljust(headers_size, b"\x00"),
        machine_code.ljust(aligned_code, b"\x00"),
        _import_section(aligned_import),
    ))


def write_pe_executable(machine_code: bytes, path: str | os.PathLike[str]) -> bytes:
    """Build a PE image, write it to ``path``, report it on stdout and return it."""
    image = build_pe(machine_code)
    fd = os.open(Path(path), os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o755)
    with os.fdopen(fd, "wb") as handle:
        handle.write(image)
    print(f"PE executable generated: {os.fspath(path)}")
    return image