"""Stack-slot allocation and load/store emission for program variables."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from blazec.x64 import Assembler, Register

MAX_VARS = 256
VAR_SIZE = 8
FRAME_SIZE = 256
MAX_NAME_LENGTH = 255
FIRST_STACK_OFFSET = -8


class VarType(enum.IntEnum):
    """Kind of value a variable slot holds."""

    INT = 0
    FLOAT = 1
    STRING = 2
    BOOL = 3
    SOLID = 4


@dataclass
class Variable:
    """One 8-byte stack slot, identified by the hash of its name."""

    name_hash: int
    stack_offset: int
    is_initialized: bool = False
    var_type: VarType = VarType.INT

    @property
    def frame_offset(self) -> int:
        """Displacement of the slot from RSP once the frame is reserved."""
        return FRAME_SIZE + self.stack_offset


def hash_name(name: str) -> int:
    """32-bit djb2 hash of ``name``."""
    value = 5381
    for byte in name.encode("utf-8"):
        value = (value * 33 + byte) & 0xFFFFFFFF
    return value


class VariableTable:
    """Variables of the top-level program, kept in a 256-byte stack frame.

    The frame is reserved lazily with ``sub rsp, 256`` on first use.
    Variables are looked up by name hash only.
    """

    def __init__(self, asm: Assembler, max_vars: int = MAX_VARS) -> None:
        if max_vars < 0:
            raise ValueError("max_vars must not be negative")
        self.asm = asm
        self.max_vars = max_vars
        self.variables: list[Variable] = []
        self.next_stack_offset = FIRST_STACK_OFFSET
        self.frame_setup = False

    # -- slot management -------------------------------------------------

    def _find_or_create(self, name: str) -> Variable | None:
        wanted = hash_name(name)
        for var in self.variables:
            if var.name_hash == wanted:
                return var
        if len(self.variables) >= self.max_vars:
            return None
        var = Variable(wanted, self.next_stack_offset)
        self.variables.append(var)
        self.next_stack_offset -= VAR_SIZE
        return var

    def get_or_create(self, name: str) -> Variable:
        """Return the slot for ``name``, allocating one if needed."""
        var = self._find_or_create(name)
        if var is None:
            raise OverflowError(f"too many variables (limit {self.max_vars})")
        return var

    def get_or_create_typed(self, name: str, var_type: VarType) -> Variable:
        """Like :meth:`get_or_create`, setting the type while not yet initialized."""
        var = self.get_or_create(name)
        if not var.is_initialized:
            var.var_type = VarType(var_type)
        return var

    def _ensure_frame(self) -> None:
        if not self.frame_setup:
            self.asm.sub_reg_imm32(Register.RSP, FRAME_SIZE)
            self.frame_setup = True

    def _emit(self, *values: int) -> None:
        for value in values:
            self.asm.buf.emit_byte(value)

    # -- code emission -----------------------------------------------------

    def store(self, name: str, reg: Register) -> None:
        """Emit ``mov [rsp + slot], reg`` and mark the variable initialized."""
        self._ensure_frame()
        var = self.get_or_create(name)
        self.asm.mov_mem_reg(Register.RSP, var.frame_offset, reg)
        var.is_initialized = True

    def load(self, name: str, reg: Register) -> None:
        """Emit ``mov reg, [rsp + slot]``; loads zero when no slot is available."""
        self._ensure_frame()
        var = self._find_or_create(name)
        if var is None:
            self.asm.mov_reg_imm64(reg, 0)
            return
        self.asm.mov_reg_mem(reg, Register.RSP, var.frame_offset)

    def store_float(self, name: str) -> None:
        """Emit ``movsd [rsp + slot], xmm0`` and mark the variable initialized."""
        self._ensure_frame()
        var = self.get_or_create(name)
        var.is_initialized = True
        self._emit(0xF2, 0x0F, 0x11, 0x84, 0x24)
        self.asm.buf.emit_dword(var.frame_offset)

    def load_float(self, name: str) -> None:
        """Emit ``movsd xmm0, [rsp + slot]``, or ``xorpd xmm0, xmm0`` if unset."""
        self._ensure_frame()
        var = self._find_or_create(name)
        if var is None or not var.is_initialized:
            self._emit(0x66, 0x0F, 0x57, 0xC0)
            return
        self._emit(0xF2, 0x0F, 0x10, 0x84, 0x24)
        self.asm.buf.emit_dword(var.frame_offset)

    def load_identifier(self, name: str) -> None:
        """Load a variable by name: floats into XMM0, everything else into RAX."""
        name = name[:MAX_NAME_LENGTH]
        var = self._find_or_create(name)
        if var is not None and var.var_type is VarType.FLOAT:
            self.load_float(name)
        else:
            self.load(name, Register.RAX)

    def cleanup(self) -> None:
        """Emit ``add rsp, 256`` if the frame was reserved."""
        if self.frame_setup:
            self.asm.add_reg_imm32(Register.RSP, FRAME_SIZE)

    # -- queries -----------------------------------------------------------

    def reset(self) -> None:
        """Forget all variables and the frame, as at the start of a function."""
        self.variables.clear()
        self.next_stack_offset = FIRST_STACK_OFFSET
        self.frame_setup = False

    def is_float(self, name: str) -> bool:
        var = self._find_or_create(name)
        return var is not None and var.var_type is VarType.FLOAT

    def is_solid(self, name: str) -> bool:
        var = self._find_or_create(name)
        return var is not None and var.var_type is VarType.SOLID

    def has_variables(self) -> bool:
        return bool(self.variables)