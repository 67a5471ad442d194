"""SSE2 scalar double-precision instruction emission."""

from __future__ import annotations

import enum
import struct

from blazec.x64 import Assembler, Register


class XmmRegister(enum.IntEnum):
    """SSE registers, numbered by their hardware encoding."""

    XMM0 = 0
    XMM1 = 1
    XMM2 = 2
    XMM3 = 3
    XMM4 = 4
    XMM5 = 5
    XMM6 = 6
    XMM7 = 7
    XMM8 = 8
    XMM9 = 9
    XMM10 = 10
    XMM11 = 11
    XMM12 = 12
    XMM13 = 13
    XMM14 = 14
    XMM15 = 15


def _high(reg: int) -> bool:
    return 8 <= int(reg) <= 15


def _modrm(mod: int, reg: int, rm: int) -> int:
    return ((mod & 3) << 6) | ((int(reg) & 7) << 3) | (int(rm) & 7)


class SseAssembler(Assembler):
    """Assembler with scalar double SSE instructions."""

    def _xmm_xmm(self, prefix: int, opcode: int, dst: XmmRegister, src: XmmRegister) -> None:
        self._byte(prefix)
        if _high(dst) or _high(src):
            self.rex(False, _high(dst), False, _high(src))
        self._byte(0x0F)
        self._byte(opcode)
        self._byte(_modrm(3, dst, src))

    def _xmm_memory(self, opcode: int, xmm: XmmRegister, base: Register) -> None:
        self._byte(0xF2)
        if _high(xmm) or _high(base):
            self.rex(False, _high(xmm), False, _high(base))
        self._byte(0x0F)
        self._byte(opcode)
        if int(base) & 7 == 4:
            self._byte(_modrm(0, xmm, 4))
            self._byte(0x24)
        else:
            self._byte(_modrm(0, xmm, base))

    def movsd_xmm_imm(self, reg: XmmRegister, value: float) -> None:
        """Load a double constant by way of RAX and the stack."""
        (bits,) = struct.unpack("<Q", struct.pack("<d", value))
        self.mov_reg_imm64(Register.RAX, bits)
        self.push_reg(Register.RAX)
        self.movsd_xmm_mem(reg, Register.RSP)
        self.add_reg_imm32(Register.RSP, 8)

    def movsd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0xF2, 0x10, dst, src)

    def movsd_xmm_mem(self, dst: XmmRegister, base: Register) -> None:
        self._xmm_memory(0x10, dst, base)

    def movsd_mem_xmm(self, base: Register, src: XmmRegister) -> None:
        self._xmm_memory(0x11, src, base)

    def addsd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0xF2, 0x58, dst, src)

    def subsd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0xF2, 0x5C, dst, src)

    def mulsd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0xF2, 0x59, dst, src)

    def divsd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0xF2, 0x5E, dst, src)

    def ucomisd_xmm_xmm(self, dst: XmmRegister, src: XmmRegister) -> None:
        self._xmm_xmm(0x66, 0x2E, dst, src)

    def cvtsi2sd_xmm_reg(self, dst: XmmRegister, src: Register) -> None:
        self._byte(0xF2)
        self.rex(True, _high(dst), False, _high(src))
        self._byte(0x0F)
        self._byte(0x2A)
        self._byte(_modrm(3, dst, src))

    def cvtsd2si_reg_xmm(self, dst: Register, src: XmmRegister) -> None:
        self._byte(0xF2)
        self.rex(True, _high(dst), False, _high(src))
        self._byte(0x0F)
        self._byte(0x2D)
        self._byte(_modrm(3, dst, src))

    def comisd_xmm_xmm(self, xmm1: XmmRegister, xmm2: XmmRegister) -> None:
        self._xmm_xmm(0x66, 0x2F, xmm1, xmm2)