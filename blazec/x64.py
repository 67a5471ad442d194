"""x86-64 machine code emission into a growable code buffer."""

from __future__ import annotations

import enum
from dataclasses import dataclass

MAX_TEMPORAL_MARKERS = 16
TEMPORAL_FRAME_SIZE = 128


class Register(enum.IntEnum):
    """General purpose registers, numbered by their hardware encoding."""

    RAX = 0
    RCX = 1
    RDX = 2
    RBX = 3
    RSP = 4
    RBP = 5
    RSI = 6
    RDI = 7
    R8 = 8
    R9 = 9
    R10 = 10
    R11 = 11
    R12 = 12
    R13 = 13
    R14 = 14
    R15 = 15
    RIP = 16


class Platform(enum.Enum):
    """Operating system the generated code targets."""

    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"


class Comparison(enum.Enum):
    """Comparisons understood by future-feedback conditionals."""

    GREATER_THAN = "greater_than"
    LESS_EQUAL = "less_equal"
    EQUAL = "equal"
    NOT_EQUAL = "not_equal"


@dataclass
class GggxState:
    """Gap analysis state steering code generation."""

    gap_index: int = 0
    zone_score: int = 0
    is_provisional: bool = False


def _extended(reg: int) -> bool:
    return 8 <= int(reg) <= 15


def _modrm(mod: int, reg: int, rm: int) -> int:
    return ((mod & 3) << 6) | ((int(reg) & 7) << 3) | (int(rm) & 7)


class CodeBuffer:
    """Byte buffer with a write position that may be rewound for patching."""

    def __init__(self, target_platform: Platform = Platform.LINUX) -> None:
        self.code = bytearray()
        self.position = 0
        self.target_platform = target_platform
        self.temporal_markers: list[int] = []

    def __bytes__(self) -> bytes:
        return bytes(self.code)

    def __len__(self) -> int:
        return len(self.code)

    def emit_byte(self, value: int) -> None:
        """Write one byte (truncated to 8 bits) at the current position."""
        value &= 0xFF
        if self.position >= len(self.code):
            self.code.extend(bytes(self.position - len(self.code)))
            self.code.append(value)
        else:
            self.code[self.position] = value
        self.position += 1

    def _emit_le(self, value: int, size: int) -> None:
        for byte in (value & ((1 << (8 * size)) - 1)).to_bytes(size, "little"):
            self.emit_byte(byte)

    def emit_dword(self, value: int) -> None:
        self._emit_le(value, 4)

    def emit_qword(self, value: int) -> None:
        self._emit_le(value, 8)

    def _check_range(self, position: int, size: int) -> None:
        if position < 0 or position + size > len(self.code):
            raise IndexError(f"patch at {position} of {size} bytes is outside the buffer")

    def patch_dword(self, position: int, value: int) -> None:
        """Overwrite four bytes at ``position`` without moving the write position."""
        self._check_range(position, 4)
        self.code[position:position + 4] = (value & 0xFFFFFFFF).to_bytes(4, "little")

    def patch_byte(self, position: int, value: int) -> None:
        """Overwrite one byte at ``position`` without moving the write position."""
        self._check_range(position, 1)
        self.code[position] = value & 0xFF


class Assembler:
    """Emits encoded x86-64 instructions into a :class:`CodeBuffer`."""

    def __init__(self, buf: CodeBuffer) -> None:
        self.buf = buf

    def _byte(self, value: int) -> None:
        self.buf.emit_byte(value)

    def rex(self, w: bool, r: bool, x: bool, b: bool) -> None:
        """Emit a REX prefix when any of its bits is set."""
        value = 0x40
        if w:
            value |= 0x08
        if r:
            value |= 0x04
        if x:
            value |= 0x02
        if b:
            value |= 0x01
        if value != 0x40:
            self._byte(value)

    def _reg_reg(self, opcode: int, dst: Register, src: Register) -> None:
        self.rex(True, _extended(src), False, _extended(dst))
        self._byte(opcode)
        self._byte(_modrm(3, src, dst))

    def _unary(self, opcode: int, ext: int, reg: Register) -> None:
        self.rex(True, False, False, _extended(reg))
        self._byte(opcode)
        self._byte(_modrm(3, ext, reg))

    def mov_reg_imm64(self, reg: Register, value: int) -> None:
        self.rex(True, False, False, _extended(reg))
        self._byte(0xB8 + (int(reg) & 7))
        self.buf.emit_qword(value)

    def mov_reg_reg(self, dst: Register, src: Register) -> None:
        self._reg_reg(0x89, dst, src)

    def add_reg_reg(self, dst: Register, src: Register) -> None:
        self._reg_reg(0x01, dst, src)

    def add_reg_imm32(self, reg: Register, value: int) -> None:
        self.rex(True, False, False, _extended(reg))
        if reg == Register.RAX:
            self._byte(0x05)
        else:
            self._byte(0x81)
            self._byte(_modrm(3, 0, reg))
        self.buf.emit_dword(value)

    def sub_reg_reg(self, dst: Register, src: Register) -> None:
        self._reg_reg(0x29, dst, src)

    def sub_reg_imm32(self, reg: Register, value: int) -> None:
        self.rex(True, False, False, _extended(reg))
        if reg == Register.RAX:
            self._byte(0x2D)
        else:
            self._byte(0x81)
            self._byte(_modrm(3, 5, reg))
        self.buf.emit_dword(value)

    def mul_reg(self, reg: Register) -> None:
        self._unary(0xF7, 4, reg)

    def div_reg(self, reg: Register) -> None:
        self._unary(0xF7, 6, reg)

    def cmp_reg_reg(self, r1: Register, r2: Register) -> None:
        self._reg_reg(0x39, r1, r2)

    def cmp_reg_imm32(self, reg: Register, value: int) -> None:
        self._unary(0x81, 7, reg)
        self.buf.emit_dword(value)

    def jmp_rel32(self, offset: int) -> None:
        self._byte(0xE9)
        self.buf.emit_dword(offset)

    def _jcc_rel32(self, condition: int, offset: int) -> None:
        self._byte(0x0F)
        self._byte(condition)
        self.buf.emit_dword(offset)

    def je_rel32(self, offset: int) -> None:
        self._jcc_rel32(0x84, offset)

    def jne_rel32(self, offset: int) -> None:
        self._jcc_rel32(0x85, offset)

    def jg_rel32(self, offset: int) -> None:
        self._jcc_rel32(0x8F, offset)

    def jle_rel32(self, offset: int) -> None:
        self._jcc_rel32(0x8E, offset)

    def jge_rel32(self, offset: int) -> None:
        self._jcc_rel32(0x8D, offset)

    def push_reg(self, reg: Register) -> None:
        if _extended(reg):
            self._byte(0x41)
        self._byte(0x50 + (int(reg) & 7))

    def pop_reg(self, reg: Register) -> None:
        if _extended(reg):
            self._byte(0x41)
        self._byte(0x58 + (int(reg) & 7))

    def _memory_operand(self, reg: Register, base: Register, offset: int) -> None:
        if offset == 0 and base not in (Register.RBP, Register.RSP):
            self._byte(_modrm(0, reg, base))
        elif base == Register.RSP:
            if offset == 0:
                self._byte(_modrm(0, reg, 4))
                self._byte(0x24)
            elif -128 <= offset <= 127:
                self._byte(_modrm(1, reg, 4))
                self._byte(0x24)
                self._byte(offset)
            else:
                self._byte(_modrm(2, reg, 4))
                self._byte(0x24)
                self.buf.emit_dword(offset)
        elif -128 <= offset <= 127:
            self._byte(_modrm(1, reg, base))
            self._byte(offset)
        else:
            self._byte(_modrm(2, reg, base))
            self.buf.emit_dword(offset)

    def mov_mem_reg(self, base: Register, offset: int, src: Register) -> None:
        self.rex(True, _extended(src), False, _extended(base))
        self._byte(0x89)
        self._memory_operand(src, base, offset)

    def mov_reg_mem(self, dst: Register, base: Register, offset: int) -> None:
        self.rex(True, _extended(dst), False, _extended(base))
        self._byte(0x8B)
        self._memory_operand(dst, base, offset)

    def lea(self, dst: Register, base: Register, offset: int) -> None:
        self.rex(True, _extended(dst), False, _extended(base))
        self._byte(0x8D)
        if base == Register.RIP:
            self._byte(_modrm(0, dst, 5))
            self.buf.emit_dword(offset)
        elif offset == 0 and base != Register.RBP:
            self._byte(_modrm(0, dst, base))
        elif -128 <= offset <= 127:
            self._byte(_modrm(1, dst, base))
            self._byte(offset)
        else:
            self._byte(_modrm(2, dst, base))
            self.buf.emit_dword(offset)

    def syscall(self) -> None:
        self._byte(0x0F)
        self._byte(0x05)

    def xor_reg_reg(self, dst: Register, src: Register) -> None:
        self.rex(True, _extended(dst), False, _extended(src))
        self._byte(0x31)
        self._byte(_modrm(3, src, dst))

    def inc_reg(self, reg: Register) -> None:
        self._unary(0xFF, 0, reg)

    def dec_reg(self, reg: Register) -> None:
        self._unary(0xFF, 1, reg)

    def mov_mem_reg_indexed(self, base: Register, index: Register, src: Register) -> None:
        """Byte store ``[base + index] = src``."""
        self.rex(True, _extended(src), _extended(index), _extended(base))
        self._byte(0x88)
        self._byte(0x04 | ((int(src) & 7) << 3))
        self._byte(((int(index) & 7) << 3) | (int(base) & 7))

    def function_prologue(self) -> None:
        self.push_reg(Register.RBP)
        self.mov_reg_reg(Register.RBP, Register.RSP)
        self.rex(True, False, False, False)
        self._byte(0x81)
        self._byte(_modrm(3, 5, Register.RSP))
        self.buf.emit_dword(TEMPORAL_FRAME_SIZE)

    def function_epilogue(self) -> None:
        self.mov_reg_reg(Register.RSP, Register.RBP)
        self.pop_reg(Register.RBP)
        self._byte(0xC3)

    _TEMPORAL_REGISTERS = (Register.RAX, Register.RBX, Register.RCX, Register.RDX)

    def _temporal_slots(self, marker_id: int):
        base = -16 - (marker_id & 0xFF) * 32
        for slot, reg in enumerate(self._TEMPORAL_REGISTERS):
            yield base - slot * 8, reg

    def save_temporal_state(self, marker_id: int) -> None:
        """Store RAX, RBX, RCX and RDX in the frame slot of ``marker_id``."""
        for offset, reg in self._temporal_slots(marker_id):
            self.mov_mem_reg(Register.RBP, offset, reg)

    def restore_temporal_state(self, marker_id: int) -> None:
        """Reload RAX, RBX, RCX and RDX from the frame slot of ``marker_id``."""
        for offset, reg in self._temporal_slots(marker_id):
            self.mov_reg_mem(reg, Register.RBP, offset)

    def future_conditional(self, comparison: Comparison, value_reg: Register) -> None:
        """Emit a compare and placeholder jump, recording its position for patching."""
        marker = self.buf.position
        if comparison is Comparison.GREATER_THAN:
            self.cmp_reg_imm32(value_reg, 30)
            self.jg_rel32(0)
        elif comparison is Comparison.LESS_EQUAL:
            self.cmp_reg_imm32(value_reg, 30)
            self.jle_rel32(0)
        elif comparison is Comparison.EQUAL:
            self.cmp_reg_imm32(value_reg, 0)
            self.je_rel32(0)
        elif comparison is Comparison.NOT_EQUAL:
            self.cmp_reg_imm32(value_reg, 0)
            self.jne_rel32(0)
        if len(self.buf.temporal_markers) < MAX_TEMPORAL_MARKERS:
            self.buf.temporal_markers.append(marker)

    def gggx_check(self, state: GggxState) -> None:
        """Emit a runtime gap check for provisional states, then a zone marker."""
        if state.is_provisional:
            self.mov_reg_imm64(Register.RAX, state.gap_index)
            self.cmp_reg_imm32(Register.RAX, 600)
            self.jg_rel32(0)
        # Both zones currently reserve a single NOP slot.
        self._byte(0x90)

    def test_reg_reg(self, reg1: Register, reg2: Register) -> None:
        self._reg_reg(0x85, reg1, reg2)

    def jz(self, offset: int) -> None:
        self._byte(0x74)
        self._byte(offset)

    def jnz(self, offset: int) -> None:
        self._byte(0x75)
        self._byte(offset)

    def neg_reg(self, reg: Register) -> None:
        self._unary(0xF7, 3, reg)

    def _shift(self, ext: int, reg: Register, count: int) -> None:
        self.rex(True, False, False, _extended(reg))
        if count == 1:
            self._byte(0xD1)
            self._byte(_modrm(3, ext, reg))
        else:
            self._byte(0xC1)
            self._byte(_modrm(3, ext, reg))
            self._byte(count)

    def shl_reg_imm8(self, reg: Register, count: int) -> None:
        self._shift(4, reg, count & 0xFF)

    def shr_reg_imm8(self, reg: Register, count: int) -> None:
        self._shift(5, reg, count & 0xFF)

    def sar_reg_imm8(self, reg: Register, count: int) -> None:
        self._shift(7, reg, count & 0xFF)

    def imul_reg_reg_imm32(self, dst: Register, src: Register, imm: int) -> None:
        self.rex(True, _extended(dst), False, _extended(src))
        if -128 <= imm <= 127:
            self._byte(0x6B)
            self._byte(_modrm(3, dst, src))
            self._byte(imm)
        else:
            self._byte(0x69)
            self._byte(_modrm(3, dst, src))
            self.buf.emit_dword(imm)

    def print_integer(self) -> None:
        """Emit a minimal write of four bytes from a scratch stack buffer."""
        self.rex(True, False, False, False)
        self._byte(0x81)
        self._byte(_modrm(3, 5, Register.RSP))
        self.buf.emit_dword(32)

        self.mov_reg_imm64(Register.RAX, 1)
        self.mov_reg_imm64(Register.RDI, 1)
        self.mov_reg_reg(Register.RSI, Register.RSP)
        self.mov_reg_imm64(Register.RDX, 4)
        self.syscall()

        self.rex(True, False, False, False)
        self._byte(0x81)
        self._byte(_modrm(3, 0, Register.RSP))
        self.buf.emit_dword(32)