import struct

import pytest

from blazec.sse import SseAssembler, XmmRegister
from blazec.x64 import CodeBuffer, Platform, Register


def encode(method, *args):
    asm = SseAssembler(CodeBuffer(Platform.LINUX))
    getattr(asm, method)(*args)
    return bytes(asm.buf.code)


def test_movsd_xmm_imm_goes_through_stack():
    bits = struct.unpack("<Q", struct.pack("<d", 1.5))[0]
    code = encode("movsd_xmm_imm", XmmRegister.XMM2, 1.5)
    expected = (
        encode("mov_reg_imm64", Register.RAX, bits)
        + encode("push_reg", Register.RAX)
        + encode("movsd_xmm_mem", XmmRegister.XMM2, Register.RSP)
        + encode("add_reg_imm32", Register.RSP, 8)
    )
    assert code == expected


def test_movsd_xmm_imm_embeds_double_bits():
    code = encode("movsd_xmm_imm", XmmRegister.XMM0, -1.0)
    assert struct.pack("<d", -1.0) in code
    assert struct.pack("<d", 10.0) in encode("movsd_xmm_imm", XmmRegister.XMM0, 10.0)


def test_arithmetic_family_shares_layout():
    names = ["addsd_xmm_xmm", "subsd_xmm_xmm", "mulsd_xmm_xmm", "divsd_xmm_xmm"]
    codes = [encode(name, XmmRegister.XMM1, XmmRegister.XMM2) for name in names]
    assert all(code[0] == 0xF2 for code in codes)
    assert len({len(code) for code in codes}) == 1
    assert len({code[2] for code in codes}) == len(names)
    assert len({code[:2] + code[3:] for code in codes}) == 1


def test_high_registers_add_rex_prefix():
    low = encode("addsd_xmm_xmm", XmmRegister.XMM1, XmmRegister.XMM2)
    high = encode("addsd_xmm_xmm", XmmRegister.XMM9, XmmRegister.XMM2)
    assert len(high) == len(low) + 1
    assert high[0] == low[0]
    assert high[2:] == low[1:]


def test_movsd_xmm_xmm_with_high_source():
    low = encode("movsd_xmm_xmm", XmmRegister.XMM0, XmmRegister.XMM1)
    high = encode("movsd_xmm_xmm", XmmRegister.XMM0, XmmRegister.XMM9)
    assert high[2:] == low[1:]
    assert high[1] != encode("movsd_xmm_xmm", XmmRegister.XMM8, XmmRegister.XMM1)[1]


def test_movsd_from_rsp_uses_sib():
    rsp = encode("movsd_xmm_mem", XmmRegister.XMM3, Register.RSP)
    rax = encode("movsd_xmm_mem", XmmRegister.XMM3, Register.RAX)
    assert len(rsp) == len(rax) + 1
    assert rsp[:3] == rax[:3]


def test_movsd_store_and_load_differ_only_in_opcode():
    load = encode("movsd_xmm_mem", XmmRegister.XMM1, Register.RBX)
    store = encode("movsd_mem_xmm", Register.RBX, XmmRegister.XMM1)
    assert load[:2] == store[:2]
    assert load[3:] == store[3:]
    assert load[2] != store[2]


@pytest.mark.parametrize("method", ["movsd_xmm_mem", "movsd_mem_xmm"])
def test_extended_base_adds_rex(method):
    def call(base):
        if method == "movsd_xmm_mem":
            return encode(method, XmmRegister.XMM0, base)
        return encode(method, base, XmmRegister.XMM0)

    assert len(call(Register.R9)) == len(call(Register.RCX)) + 1
    assert len(call(Register.R12)) == len(call(Register.RSP)) + 1


def test_cvtsi2sd_always_carries_rex_w():
    low = encode("cvtsi2sd_xmm_reg", XmmRegister.XMM0, Register.RAX)
    high = encode("cvtsi2sd_xmm_reg", XmmRegister.XMM0, Register.R8)
    assert len(low) == len(high)
    assert low[0] == high[0]
    assert bin(low[1] ^ high[1]).count("1") == 1


def test_int_float_conversions_differ_in_opcode():
    to_float = encode("cvtsi2sd_xmm_reg", XmmRegister.XMM1, Register.RDX)
    to_int = encode("cvtsd2si_reg_xmm", Register.RCX, XmmRegister.XMM2)
    assert to_float[:3] == to_int[:3]
    assert to_float[4:] == to_int[4:]
    assert to_float[3] != to_int[3]


def test_compare_instructions_differ_in_opcode():
    unordered = encode("ucomisd_xmm_xmm", XmmRegister.XMM0, XmmRegister.XMM1)
    ordered = encode("comisd_xmm_xmm", XmmRegister.XMM0, XmmRegister.XMM1)
    assert unordered[0] == 0x66
    assert ordered[0] == unordered[0]
    assert ordered[1] == unordered[1]
    assert ordered[3:] == unordered[3:]
    assert ordered[2] != unordered[2]


def test_compare_with_high_register_grows_by_one():
    low = encode("comisd_xmm_xmm", XmmRegister.XMM2, XmmRegister.XMM3)
    high = encode("comisd_xmm_xmm", XmmRegister.XMM2, XmmRegister.XMM11)
    assert len(high) == len(low) + 1
    assert high[2:] == low[1:]