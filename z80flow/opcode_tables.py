"""Declarative Z80 decode tables.

Every table has exactly 256 entries.  The tables are built once per decoder
configuration and are never mutated; decoding always produces a new
:class:`~z80flow.opcode.Opcode`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple

from .memory import Memory
from .opcode import NumberType, Opcode, OpcodeEntry, OpcodeFlag, PrefixEntry, TableEntry


REGISTERS = ("B", "C", "D", "E", "H", "L", "(HL)", "A")
CONDITIONS = ("NZ", "Z", "NC", "C", "PO", "PE", "P", "M")
ALU_OPERATIONS = ("ADD A,", "ADC A,", "SUB ", "SBC A,", "AND ", "XOR ", "OR ", "CP ")
ROTATIONS = ("RLC", "RRC", "RL", "RR", "SLA", "SRA", "SLL", "SRL")
PAIRS = ("BC", "DE", "HL", "SP")
STACK_PAIRS = ("BC", "DE", "HL", "AF")

JUMP = OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.STOP
CONDITIONAL_JUMP = OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CONDITIONAL
CALL = OpcodeFlag.BRANCH_ADDRESS | OpcodeFlag.CALL
CONDITIONAL_CALL = CALL | OpcodeFlag.CONDITIONAL
RETURN = OpcodeFlag.RET | OpcodeFlag.STOP
CONDITIONAL_RETURN = OpcodeFlag.RET | OpcodeFlag.CONDITIONAL

INVALID_TEXT = "INVALID INSTRUCTION\t; behaves like NOP"


# ---------------------------------------------------------------------------
# Entry helpers
# ---------------------------------------------------------------------------


def _op(code: int, template: str, prefix: int = 0, flags: OpcodeFlag = OpcodeFlag.NONE) -> OpcodeEntry:
    return OpcodeEntry(code, template, prefix + 1, flags)


def _byte(code: int, template: str, prefix: int = 0, value_type: NumberType = NumberType.NUMBER_BYTE) -> OpcodeEntry:
    return OpcodeEntry(code, template, prefix + 2, value_type=value_type)


def _word(code: int, template: str, prefix: int = 0, value_type: NumberType = NumberType.NUMBER_WORD) -> OpcodeEntry:
    return OpcodeEntry(code, template, prefix + 3, value_type=value_type)


def _data(code: int, template: str, prefix: int = 0) -> OpcodeEntry:
    return _word(code, template, prefix, NumberType.DATA_LBL)


def _jump(code: int, template: str, flags: OpcodeFlag) -> OpcodeEntry:
    return OpcodeEntry(code, template, 3, flags, NumberType.CODE_LBL)


def _call(code: int, template: str, flags: OpcodeFlag) -> OpcodeEntry:
    return OpcodeEntry(code, template, 3, flags, NumberType.CODE_SUB)


def _relative(code: int, template: str, flags: OpcodeFlag) -> OpcodeEntry:
    return OpcodeEntry(code, template, 2, flags, NumberType.CODE_LOCAL_LBL)


def _indexed(code: int, template: str, length: int = 3, immediate: bool = False) -> OpcodeEntry:
    return OpcodeEntry(code, template, length, value_type=NumberType.RELATIVE_INDEX, immediate=immediate)


def _finish(entries: Dict[int, TableEntry], name: str) -> Tuple[TableEntry, ...]:
    missing = [code for code in range(256) if code not in entries]
    if missing:
        raise AssertionError(f"{name} table lacks entries for {[hex(code) for code in missing]}")
    return tuple(entries[code] for code in range(256))


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def _build_cb_table() -> Tuple[TableEntry, ...]:
    entries: Dict[int, TableEntry] = {}
    for code in range(256):
        group, bit, register = code >> 6, (code >> 3) & 7, REGISTERS[code & 7]
        if group == 0:
            template = f"{ROTATIONS[bit]} {register}"
        else:
            template = f"{('BIT', 'RES', 'SET')[group - 1]} {bit},{register}"
        entries[code] = _op(code, template, prefix=1)
    return _finish(entries, "CB")


def _build_index_cb_table(index: str) -> Tuple[TableEntry, ...]:
    entries: Dict[int, TableEntry] = {}
    for code in range(256):
        group, bit, register = code >> 6, (code >> 3) & 7, code & 7
        operand = f"({index}{{}})"
        # Undocumented forms also copy the result into a register.
        suffix = "" if register == 6 else "," + REGISTERS[register]
        if group == 0:
            template = f"{ROTATIONS[bit]} {operand}{suffix}"
        elif group == 1:
            template = f"BIT {bit},{operand}"
        else:
            template = f"{('RES', 'SET')[group - 2]} {bit},{operand}{suffix}"
        entries[code] = OpcodeEntry(
            code, template, 4, value_type=NumberType.RELATIVE_INDEX, index_before_opcode=True
        )
    return _finish(entries, f"{index} CB")


def _build_ed_table(zx_next: bool) -> Tuple[TableEntry, ...]:
    entries: Dict[int, TableEntry] = {}
    negations = ("NEG",) + ("[neg]",) * 7
    returns = (("RETN", RETURN), ("RETI", RETURN)) + (
        ("[retn]", OpcodeFlag.NONE),
        ("[reti]", OpcodeFlag.NONE),
    ) * 3
    modes = ("IM 0", "[im0]", "IM 1", "IM 2", "[im0]", "[im0]", "[im1]", "[im2]")
    specials = ("LD I,A", "LD R,A", "LD A,I", "LD A,R", "RRD", "RLD", "[ld i,i?]", "[ld r,r?]")
    for row in range(8):
        base = 0x40 | (row << 3)
        pair = PAIRS[row >> 1]
        in_register = "F" if row == 6 else REGISTERS[row]
        out_register = "0" if row == 6 else REGISTERS[row]
        entries[base] = _op(base, f"IN {in_register},(C)", prefix=1)
        entries[base | 1] = _op(base | 1, f"OUT (C),{out_register}", prefix=1)
        if row & 1:
            entries[base | 2] = _op(base | 2, f"ADC HL,{pair}", prefix=1)
            entries[base | 3] = _data(base | 3, f"LD {pair},({{}})", prefix=1)
        else:
            entries[base | 2] = _op(base | 2, f"SBC HL,{pair}", prefix=1)
            entries[base | 3] = _data(base | 3, f"LD ({{}}),{pair}", prefix=1)
        entries[base | 4] = _op(base | 4, negations[row], prefix=1)
        template, flags = returns[row]
        entries[base | 5] = _op(base | 5, template, prefix=1, flags=flags)
        entries[base | 6] = _op(base | 6, modes[row], prefix=1)
        entries[base | 7] = _op(base | 7, specials[row], prefix=1)

    block_operations = (
        ("LDI", "CPI", "INI", "OUTI"),
        ("LDD", "CPD", "IND", "OUTD"),
        ("LDIR", "CPIR", "INIR", "OTIR"),
        ("LDDR", "CPDR", "INDR", "OTDR"),
    )
    for row, names in enumerate(block_operations):
        for column, name in enumerate(names):
            code = 0xA0 | (row << 3) | column
            entries[code] = _op(code, name, prefix=1)

    if zx_next:
        entries[0x8A] = _word(0x8A, "PUSH {}", prefix=1, value_type=NumberType.NUMBER_WORD_BIG_ENDIAN)

    for code in range(256):
        entries.setdefault(code, _op(code, INVALID_TEXT, prefix=1))
    return _finish(entries, "ED")


def _build_index_table(index: str, index_cb: Tuple[TableEntry, ...]) -> Tuple[TableEntry, ...]:
    """DD (``index="IX"``) or FD (``index="IY"``) table."""

    high, low, memory = index + "H", index + "L", f"({index}{{}})"
    entries: Dict[int, TableEntry] = {}

    for row, pair in enumerate(("BC", "DE", index, "SP")):
        code = 0x09 | (row << 4)
        entries[code] = _op(code, f"ADD {index},{pair}", prefix=1)
    entries[0x21] = _word(0x21, f"LD {index},{{}}", prefix=1)
    entries[0x22] = _data(0x22, f"LD ({{}}),{index}", prefix=1)
    entries[0x2A] = _data(0x2A, f"LD {index},({{}})", prefix=1)
    entries[0x23] = _op(0x23, f"INC {index}", prefix=1)
    entries[0x2B] = _op(0x2B, f"DEC {index}", prefix=1)
    for code, half in ((0x24, high), (0x2C, low)):
        entries[code] = _op(code, f"INC {half}", prefix=1)
        entries[code + 1] = _op(code + 1, f"DEC {half}", prefix=1)
        entries[code + 2] = _byte(code + 2, f"LD {half},{{}}", prefix=1)
    entries[0x34] = _indexed(0x34, f"INC {memory}")
    entries[0x35] = _indexed(0x35, f"DEC {memory}")
    entries[0x36] = _indexed(0x36, f"LD {memory},{{}}", length=4, immediate=True)

    # Register moves; H and L become the index halves unless (IX+d) is involved.
    half_registers = ("B", "C", "D", "E", high, low, None, "A")
    for target in range(8):
        for source in range(8):
            code = 0x40 | (target << 3) | source
            if code == 0x76:
                continue
            if source == 6:
                entries[code] = _indexed(code, f"LD {REGISTERS[target]},{memory}")
            elif target == 6:
                entries[code] = _indexed(code, f"LD {memory},{REGISTERS[source]}")
            elif target in (4, 5) or source in (4, 5):
                entries[code] = _op(
                    code, f"LD {half_registers[target]},{half_registers[source]}", prefix=1
                )

    for row, operation in enumerate(ALU_OPERATIONS):
        code = 0x80 | (row << 3)
        entries[code | 4] = _op(code | 4, operation + high, prefix=1)
        entries[code | 5] = _op(code | 5, operation + low, prefix=1)
        entries[code | 6] = _indexed(code | 6, operation + memory)

    entries[0xCB] = PrefixEntry(0xCB, index_cb, advance=2)
    entries[0xE1] = _op(0xE1, f"POP {index}", prefix=1)
    entries[0xE3] = _op(0xE3, f"EX (SP),{index}", prefix=1)
    entries[0xE5] = _op(0xE5, f"PUSH {index}", prefix=1)
    entries[0xE9] = _op(0xE9, f"JP ({index})", prefix=1, flags=OpcodeFlag.STOP)
    entries[0xF9] = _op(0xF9, f"LD SP,{index}", prefix=1)

    # A following prefix supersedes this one.
    for code in (0xDD, 0xED, 0xFD):
        entries[code] = OpcodeEntry(code, f"[NOP]\t; prefix superseded by 0x{code:02X}", 1)

    for code in range(256):
        entries.setdefault(code, _op(code, INVALID_TEXT, prefix=1))
    return _finish(entries, index)


def _build_base_table(
    cb: Tuple[TableEntry, ...],
    ed: Tuple[TableEntry, ...],
    dd: Tuple[TableEntry, ...],
    fd: Tuple[TableEntry, ...],
) -> Tuple[TableEntry, ...]:
    entries: Dict[int, TableEntry] = {}

    # 0x00 - 0x3F
    for row, pair in enumerate(PAIRS):
        code = row << 4
        if pair == "SP":
            entries[code | 1] = _data(code | 1, "LD SP,{}")
        else:
            entries[code | 1] = _word(code | 1, f"LD {pair},{{}}")
        entries[code | 3] = _op(code | 3, f"INC {pair}")
        entries[code | 9] = _op(code | 9, f"ADD HL,{pair}")
        entries[code | 0xB] = _op(code | 0xB, f"DEC {pair}")
    for row, register in enumerate(REGISTERS):
        code = row << 3
        entries[code | 4] = _op(code | 4, f"INC {register}")
        entries[code | 5] = _op(code | 5, f"DEC {register}")
        entries[code | 6] = _byte(code | 6, f"LD {register},{{}}")
    entries.update(
        {
            0x00: _op(0x00, "NOP"),
            0x02: _op(0x02, "LD (BC),A"),
            0x07: _op(0x07, "RLCA"),
            0x08: _op(0x08, "EX AF,AF'"),
            0x0A: _op(0x0A, "LD A,(BC)"),
            0x0F: _op(0x0F, "RRCA"),
            0x10: _relative(0x10, "DJNZ {}", CONDITIONAL_JUMP),
            0x12: _op(0x12, "LD (DE),A"),
            0x17: _op(0x17, "RLA"),
            0x18: _relative(0x18, "JR {}", JUMP),
            0x1A: _op(0x1A, "LD A,(DE)"),
            0x1F: _op(0x1F, "RRA"),
            0x22: _data(0x22, "LD ({}),HL"),
            0x27: _op(0x27, "DAA"),
            0x2A: _data(0x2A, "LD HL,({})"),
            0x2F: _op(0x2F, "CPL"),
            0x32: _data(0x32, "LD ({}),A"),
            0x37: _op(0x37, "SCF"),
            0x3A: _data(0x3A, "LD A,({})"),
            0x3F: _op(0x3F, "CCF"),
        }
    )
    for row, condition in enumerate(CONDITIONS[:4]):
        code = 0x20 | (row << 3)
        entries[code] = _relative(code, f"JR {condition},{{}}", CONDITIONAL_JUMP)

    # 0x40 - 0xBF
    for target in range(8):
        for source in range(8):
            code = 0x40 | (target << 3) | source
            entries[code] = _op(code, f"LD {REGISTERS[target]},{REGISTERS[source]}")
    entries[0x76] = _op(0x76, "HALT")
    for row, operation in enumerate(ALU_OPERATIONS):
        for column, register in enumerate(REGISTERS):
            code = 0x80 | (row << 3) | column
            entries[code] = _op(code, operation + register)

    # 0xC0 - 0xFF
    for row, condition in enumerate(CONDITIONS):
        code = 0xC0 | (row << 3)
        entries[code] = _op(code, f"RET {condition}", flags=CONDITIONAL_RETURN)
        entries[code | 2] = _jump(code | 2, f"JP {condition},{{}}", CONDITIONAL_JUMP)
        entries[code | 4] = _call(code | 4, f"CALL {condition},{{}}", CONDITIONAL_CALL)
        entries[code | 6] = _byte(code | 6, ALU_OPERATIONS[row] + "{}")
        entries[code | 7] = OpcodeEntry(code | 7, "RST {}", 1, CALL, NumberType.CODE_RST)
    for row, pair in enumerate(STACK_PAIRS):
        code = 0xC1 | (row << 4)
        entries[code] = _op(code, f"POP {pair}")
        entries[code | 4] = _op(code | 4, f"PUSH {pair}")
    entries.update(
        {
            0xC3: _jump(0xC3, "JP {}", JUMP),
            0xC9: _op(0xC9, "RET", flags=RETURN),
            0xCB: PrefixEntry(0xCB, cb),
            0xCD: _call(0xCD, "CALL {}", CALL),
            0xD3: _byte(0xD3, "OUT ({}),A", value_type=NumberType.PORT_LBL),
            0xD9: _op(0xD9, "EXX"),
            0xDB: _byte(0xDB, "IN A,({})", value_type=NumberType.PORT_LBL),
            0xDD: PrefixEntry(0xDD, dd),
            0xE3: _op(0xE3, "EX (SP),HL"),
            0xE9: _op(0xE9, "JP (HL)", flags=OpcodeFlag.STOP),
            0xEB: _op(0xEB, "EX DE,HL"),
            0xED: PrefixEntry(0xED, ed),
            0xF3: _op(0xF3, "DI"),
            0xF9: _op(0xF9, "LD SP,HL"),
            0xFB: _op(0xFB, "EI"),
            0xFD: PrefixEntry(0xFD, fd),
        }
    )
    return _finish(entries, "base")


@dataclass(frozen=True)
class DecodeTables:
    """The full set of decode tables for one configuration."""

    base: Tuple[TableEntry, ...]
    cb: Tuple[TableEntry, ...]
    ed: Tuple[TableEntry, ...]
    dd: Tuple[TableEntry, ...]
    fd: Tuple[TableEntry, ...]
    ddcb: Tuple[TableEntry, ...]
    fdcb: Tuple[TableEntry, ...]
    zx_next: bool = False


@lru_cache(maxsize=None)
def build_tables(zx_next: bool = False) -> DecodeTables:
    cb = _build_cb_table()
    ed = _build_ed_table(zx_next)
    ddcb = _build_index_cb_table("IX")
    fdcb = _build_index_cb_table("IY")
    dd = _build_index_table("IX", ddcb)
    fd = _build_index_table("IY", fdcb)
    base = _build_base_table(cb, ed, dd, fd)
    return DecodeTables(base, cb, ed, dd, fd, ddcb, fdcb, zx_next)


def get_opcode_at(memory: Memory, address: int, tables: Optional[DecodeTables] = None) -> Opcode:
    """Decode the instruction starting at ``address``."""

    table = (tables or build_tables()).base
    position = address
    while True:
        entry = table[memory.get_value_at(position)]
        if isinstance(entry, PrefixEntry):
            position += entry.advance
            table = entry.table
            continue
        return entry.decode(memory, position, address)
