"""x86-64 and SSE code emission, variable slots and ELF/PE executable building for Blaze."""

__version__ = "0.1.0"
__all__ = [
    "elf",
    "pe",
    "scalable",
    "sse",
    "variables",
    "windows_console",
    "x64",
]