from blazec.windows_console import (
    GET_STD_HANDLE_OFFSET,
    STD_OUTPUT_HANDLE,
    generate_find_kernel32,
    generate_get_proc_address,
    generate_windows_console_init,
    generate_windows_print_char,
    generate_windows_print_string,
)
from blazec.x64 import Assembler, CodeBuffer, Platform, Register


def _asm():
    return Assembler(CodeBuffer(Platform.WINDOWS))


def _encode(action):
    asm = _asm()
    action(asm)
    return bytes(asm.buf)


def test_find_kernel32_bytes():
    code = _encode(generate_find_kernel32)
    assert code == bytes((
        0x65, 0x48, 0x8B, 0x04, 0x25, 0x60, 0x00, 0x00, 0x00,
        0x48, 0x8B, 0x40, 0x18,
        0x48, 0x8B, 0x40, 0x20,
        0x48, 0x8B, 0x00,
        0x48, 0x8B, 0x40, 0x20,
    ))


def test_get_proc_address_adds_fixed_offset():
    code = _encode(generate_get_proc_address)
    assert code.startswith(_encode(lambda a: a.mov_reg_reg(Register.RAX, Register.RBX)))
    assert code.endswith(GET_STD_HANDLE_OFFSET.to_bytes(4, "little"))


def test_console_init_saves_and_restores_registers():
    code = _encode(generate_windows_console_init)
    saves = _encode(lambda a: (a.push_reg(Register.RBX), a.push_reg(Register.RCX)))
    restores = _encode(lambda a: (a.pop_reg(Register.RCX), a.pop_reg(Register.RBX)))
    assert code.startswith(saves)
    assert code.endswith(restores)
    assert _encode(generate_find_kernel32) in code
    assert STD_OUTPUT_HANDLE.to_bytes(8, "little") in code
    assert b"\xff\xd0" in code


def test_print_string_structure():
    code = _encode(generate_windows_print_string)
    saves = _encode(lambda a: (a.push_reg(Register.R10), a.push_reg(Register.R11)))
    restores = _encode(lambda a: (a.pop_reg(Register.R11), a.pop_reg(Register.R10)))
    assert code.startswith(saves)
    assert code.endswith(restores)
    assert b"\x4c\x8b\xd1" in code
    assert b"\x0f\x05" not in code
    for displacement in (0x20, 0x28, 0x30, 0x38, 0x40):
        assert bytes((0x24, displacement)) in code


def test_print_string_balances_stack():
    code = _encode(generate_windows_print_string)
    reserve = _encode(lambda a: a.sub_reg_imm32(Register.RSP, 0x58))
    release = _encode(lambda a: a.add_reg_imm32(Register.RSP, 0x58))
    assert code.count(reserve) == 1
    assert code.count(release) == 1
    assert code.index(reserve) < code.index(release)


def test_print_char_wraps_print_string():
    code = _encode(generate_windows_print_char)
    setup = _encode(lambda a: (
        a.mov_reg_reg(Register.RSI, Register.RSP),
        a.mov_reg_imm64(Register.RDX, 1),
    ))
    assert code == setup + _encode(generate_windows_print_string)