# blazec

Code generation building blocks for the Blaze language, in pure Python with
no dependencies outside the standard library.

- `blazec.x64` — `CodeBuffer`, a byte buffer with a rewindable write position
  and `patch_byte` / `patch_dword`, and `Assembler`, which emits encoded x86-64
  instructions into it: register and immediate moves, `add`/`sub`/`mul`/`div`,
  compares, `jmp` and conditional jumps, `push`/`pop`, memory loads and stores,
  `lea`, shifts, `imul`, `syscall`, function prologue and epilogue, and saving
  and restoring "temporal state" registers in the frame. `Register`,
  `Platform`, `Comparison` and `GggxState` describe operands and targets.
- `blazec.sse` — `SseAssembler`, an `Assembler` that also emits scalar
  double-precision SSE2 instructions (`movsd`, `addsd`, `subsd`, `mulsd`,
  `divsd`, `ucomisd`, `comisd`, `cvtsi2sd`, `cvtsd2si`) on `XmmRegister`
  operands.
- `blazec.elf` — `build_elf` wraps machine code in a minimal 64-bit Linux ELF
  image with one loadable segment, appending an exit system call unless the
  code already ends in `syscall`; `write_elf_executable` also writes it to a
  file with mode 0755.
- `blazec.pe` — `build_pe` produces a console PE32+ image with `.text` and
  `.idata` sections importing `GetStdHandle`, `WriteConsoleA` and
  `ExitProcess` from `kernel32.dll`; `write_pe_executable` writes it and
  prints the path.
- `blazec.scalable` — `ScalableCodeGen`, a code buffer that fills a primary
  buffer and then overflows into fixed-size segments, with optional writing to
  a file (`setup_streaming`, `finalize`), counters from `stats()`, and use as a
  context manager. Failures raise `ScalableError`.
- `blazec.windows_console` — functions that emit Windows console code
  sequences through an `Assembler` (`generate_find_kernel32`,
  `generate_windows_console_init`, `generate_windows_print_string`,
  `generate_windows_print_char`, ...).
- `blazec.variables` — `VariableTable`, which gives each named variable an
  8-byte slot in a 256-byte stack frame reserved on first use, and emits
  integer and float loads and stores for it.

## Installation

```
pip install .
```

## Examples

Emit a few instructions and build an ELF executable:

```python
from blazec.x64 import Assembler, CodeBuffer, Platform, Register
from blazec.elf import build_elf, write_elf_executable

buf = CodeBuffer(Platform.LINUX)
asm = Assembler(buf)
asm.mov_reg_imm64(Register.RAX, 60)
asm.xor_reg_reg(Register.RDI, Register.RDI)
asm.syscall()

image = build_elf(bytes(buf))
write_elf_executable(bytes(buf), "program")
```

Store and reload variables:

```python
from blazec.sse import SseAssembler
from blazec.variables import VariableTable, VarType
from blazec.x64 import CodeBuffer, Register

buf = CodeBuffer()
table = VariableTable(SseAssembler(buf))
table.store("count", Register.RAX)
table.get_or_create_typed("ratio", VarType.FLOAT)
table.store_float("ratio")
table.load_identifier("ratio")   # movsd xmm0, [rsp + slot]
table.cleanup()                  # add rsp, 256
```

Generate into segments and write the result to a file:

```python
from blazec.scalable import ScalableCodeGen

with ScalableCodeGen(initial_size=16, segment_size=16) as gen:
    gen.emit_bytes(b"\x90" * 40)
    gen.setup_streaming("out.bin")
    gen.finalize()
    print(gen.stats())
```

## What the package does not do

There is no lexer, parser or expression code generator for Blaze source, and
no command-line compiler: the package emits machine code only through the
calls shown above, and builds executables only from bytes it is given.

## Running the tests

```
pip install .[test]
pytest
```