"""Minimal 64-bit ELF executables for Linux from raw machine code."""

from __future__ import annotations

import os
import struct
from pathlib import Path

LOAD_ADDRESS = 0x400000
PAGE_SIZE = 0x1000
MAX_IMAGE_SIZE = 65536

ELF_MAGIC = b"\x7fELF"
ELFCLASS64 = 2
ELFDATA2LSB = 1
EV_CURRENT = 1
ET_EXEC = 2
EM_X86_64 = 62
PT_LOAD = 1
PF_X = 1
PF_W = 2
PF_R = 4

_EHDR = struct.Struct("<16sHHIQQQIHHHHHH")
_PHDR = struct.Struct("<IIQQQQQQ")

# mov eax, 60 ; xor edi, edi ; syscall
EXIT_STUB = bytes((0xB8, 0x3C, 0x00, 0x00, 0x00, 0x31, 0xFF, 0x0F, 0x05))
_SYSCALL = bytes((0x0F, 0x05))


def _needs_exit_stub(machine_code: bytes) -> bool:
    return len(machine_code) < 10 or machine_code[-2:] != _SYSCALL


def build_elf(machine_code: bytes) -> bytes:
    """Return an ELF image with one loadable segment holding ``machine_code``.

    An exit system call is appended unless the code already ends in a
    ``syscall`` instruction (and is at least ten bytes long).
    """
    machine_code = bytes(machine_code)
    headers_size = _EHDR.size + _PHDR.size
    # The segment size covers the headers and the code as given.
    file_size = headers_size + len(machine_code)

    ident = ELF_MAGIC + bytes((ELFCLASS64, ELFDATA2LSB, EV_CURRENT, 0))
    ident = ident.ljust(16, b"\x00")
    header = _EHDR.pack(
        ident,
        ET_EXEC,
        EM_X86_64,
        EV_CURRENT,
        LOAD_ADDRESS + headers_size,
        _EHDR.size,
        0,
        0,
        _EHDR.size,
        _PHDR.size,
        1,
        0,
        0,
        0,
    )
    program_header = _PHDR.pack(
        PT_LOAD,
        PF_X | PF_R,
        0,
        LOAD_ADDRESS,
        LOAD_ADDRESS,
        file_size,
        file_size,
        PAGE_SIZE,
    )

    image = bytearray(header + program_header + machine_code)
    if _needs_exit_stub(machine_code):
        image += EXIT_STUB
    if len(image) > MAX_IMAGE_SIZE:
        raise ValueError(
            f"ELF image of {len(image)} bytes exceeds the {MAX_IMAGE_SIZE} byte limit"
        )
    return bytes(image)


def write_elf_executable(machine_code: bytes, path: str | os.PathLike[str]) -> bytes:
    """Build an ELF image, write it to ``path`` as an executable file and return it."""
    image = build_elf(machine_code)
    fd = os.open(Path(path), os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o755)
    with os.fdopen(fd, "wb") as handle:
        handle.write(image)
    return image