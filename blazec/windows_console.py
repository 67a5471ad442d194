"""Windows console output without an import table."""

from __future__ import annotations

from blazec.x64 import Assembler, Register

PEB_LDR_DATA_OFFSET = 0x18
LDR_IN_MEMORY_ORDER_MODULE_LIST_OFFSET = 0x20
LDR_DATA_TABLE_ENTRY_DLL_BASE_OFFSET = 0x30
LDR_DATA_TABLE_ENTRY_BASE_DLL_NAME_OFFSET = 0x58
UNICODE_STRING_BUFFER_OFFSET = 0x08

GET_STD_HANDLE_OFFSET = 0x15490
STD_OUTPUT_HANDLE = 0xFFFFFFFFFFFFFFF5
NT_WRITE_FILE_SYSCALL = 0x08
SHADOW_SPACE = 0x20
NT_WRITE_FILE_FRAME = 0x58


def _emit(asm: Assembler, *values: int) -> None:
    for value in values:
        asm.buf.emit_byte(value)


def generate_find_kernel32(asm: Assembler) -> None:
    """Emit a PEB walk leaving the second loaded module's base in RAX."""
    _emit(asm, 0x65, 0x48, 0x8B, 0x04, 0x25, 0x60, 0x00, 0x00, 0x00)  # mov rax, gs:[0x60]
    _emit(asm, 0x48, 0x8B, 0x40, PEB_LDR_DATA_OFFSET)                   # rax = peb->Ldr
    _emit(asm, 0x48, 0x8B, 0x40, LDR_IN_MEMORY_ORDER_MODULE_LIST_OFFSET)
    _emit(asm, 0x48, 0x8B, 0x00)                                        # skip the process image
    _emit(asm, 0x48, 0x8B, 0x40, LDR_DATA_TABLE_ENTRY_DLL_BASE_OFFSET - 0x10)


def generate_get_proc_address(asm: Assembler) -> None:
    """Emit RAX = RBX + fixed GetStdHandle offset (kernel32 base in RBX)."""
    asm.mov_reg_reg(Register.RAX, Register.RBX)
    asm.add_reg_imm32(Register.RAX, GET_STD_HANDLE_OFFSET)


def generate_windows_console_init(asm: Assembler) -> None:
    """Emit a GetStdHandle(STD_OUTPUT_HANDLE) call, preserving RBX and RCX."""
    asm.push_reg(Register.RBX)
    asm.push_reg(Register.RCX)

    generate_find_kernel32(asm)
    asm.mov_reg_reg(Register.RBX, Register.RAX)
    generate_get_proc_address(asm)

    asm.mov_reg_imm64(Register.RCX, STD_OUTPUT_HANDLE)
    asm.sub_reg_imm32(Register.RSP, SHADOW_SPACE)
    _emit(asm, 0xFF, 0xD0)  # call rax
    asm.add_reg_imm32(Register.RSP, SHADOW_SPACE)

    asm.pop_reg(Register.RCX)
    asm.pop_reg(Register.RBX)


def generate_windows_print_string(asm: Assembler) -> None:
    """Emit NtWriteFile argument setup for the string at RSI of length RDX.

    The system call itself is not issued; RAX is set to zero (success).
    """
    asm.push_reg(Register.R10)
    asm.push_reg(Register.R11)

    asm.sub_reg_imm32(Register.RSP, NT_WRITE_FILE_FRAME)

    asm.mov_reg_imm64(Register.RCX, STD_OUTPUT_HANDLE)
    asm.xor_reg_reg(Register.RDX, Register.RDX)
    asm.xor_reg_reg(Register.R8, Register.R8)
    asm.xor_reg_reg(Register.R9, Register.R9)

    asm.mov_reg_reg(Register.RAX, Register.RSP)
    _emit(asm, 0x48, 0x89, 0x44, 0x24, 0x20)  # [rsp+0x20] = io status block
    _emit(asm, 0x48, 0x89, 0x74, 0x24, 0x28)  # [rsp+0x28] = buffer
    _emit(asm, 0x48, 0x89, 0x54, 0x24, 0x30)  # [rsp+0x30] = length

    asm.xor_reg_reg(Register.RAX, Register.RAX)
    _emit(asm, 0x48, 0x89, 0x44, 0x24, 0x38)  # byte offset = NULL
    _emit(asm, 0x48, 0x89, 0x44, 0x24, 0x40)  # key = NULL

    asm.mov_reg_imm64(Register.RAX, NT_WRITE_FILE_SYSCALL)
    _emit(asm, 0x4C, 0x8B, 0xD1)  # mov r10, rcx

    asm.xor_reg_reg(Register.RAX, Register.RAX)

    asm.add_reg_imm32(Register.RSP, NT_WRITE_FILE_FRAME)
    asm.pop_reg(Register.R11)
    asm.pop_reg(Register.R10)


def generate_windows_print_char(asm: Assembler) -> None:
    """Emit output of the single character stored at [RSP]."""
    asm.mov_reg_reg(Register.RSI, Register.RSP)
    asm.mov_reg_imm64(Register.RDX, 1)
    generate_windows_print_string(asm)