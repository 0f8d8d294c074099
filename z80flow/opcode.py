"""Instruction records produced by the Z80 decoder."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Callable, Optional, Tuple, Union

from .config import DEFAULT_SETTINGS, DisassemblerSettings
from .memory import ADDRESS_MASK, Memory


class NumberType(IntEnum):
    """Operand classification, ordered by naming priority."""

    NONE = 0
    DATA_LBL = 1
    PORT_LBL = 2
    CODE_LOCAL_LBL = 3
    CODE_LOCAL_LOOP = 4
    CODE_LBL = 5
    CODE_SUB = 6
    CODE_RST = 7
    RELATIVE_INDEX = 8
    NUMBER_BYTE = 9
    NUMBER_WORD = 10
    NUMBER_WORD_BIG_ENDIAN = 11


class OpcodeFlag(IntFlag):
    NONE = 0
    BRANCH_ADDRESS = 0x01
    CALL = 0x02
    STOP = 0x04
    RET = 0x08
    CONDITIONAL = 0x10


LABEL_TYPES = frozenset(
    {
        NumberType.DATA_LBL,
        NumberType.CODE_LOCAL_LBL,
        NumberType.CODE_LOCAL_LOOP,
        NumberType.CODE_LBL,
        NumberType.CODE_SUB,
        NumberType.CODE_RST,
    }
)

WORD_TYPES = frozenset(
    {NumberType.NUMBER_WORD, NumberType.NUMBER_WORD_BIG_ENDIAN, NumberType.PORT_LBL}
)

LabelResolver = Callable[[int], str]


@dataclass
class Opcode:
    """Decoded instruction.

    ``template`` holds one ``{}`` placeholder per operand.  ``value`` is the
    decoded operand (absolute target for branches) and ``second_value`` the
    trailing immediate of ``LD (IX+d),n``.
    """

    code: int
    template: str
    length: int
    flags: OpcodeFlag = OpcodeFlag.NONE
    value_type: NumberType = NumberType.NONE
    value: int = 0
    second_value: Optional[int] = None
    address: Optional[int] = None
    disassembled_text: Optional[str] = None

    def disassemble(
        self,
        get_label: LabelResolver,
        settings: DisassemblerSettings = DEFAULT_SETTINGS,
    ) -> str:
        """Render the instruction and remember the text."""

        template = self.template.lower() if settings.lower_case else self.template
        value_type = self.value_type
        if value_type == NumberType.NONE:
            text = template
        else:
            if value_type in LABEL_TYPES:
                value_name = get_label(self.value)
            elif value_type == NumberType.RELATIVE_INDEX:
                value_name = f"{self.value:+d}"
            elif value_type == NumberType.NUMBER_BYTE:
                value_name = settings.format_hex(self.value, 2)
            elif value_type in WORD_TYPES:
                if self.value < 0x100:
                    value_name = settings.format_hex(self.value, 4)
                else:
                    value_name = get_label(self.value)
            else:
                raise AssertionError(f"no rendering rule for {value_type!r}")
            if self.second_value is not None:
                text = template.format(value_name, settings.format_hex(self.second_value, 2))
            else:
                text = template.format(value_name)
        self.disassembled_text = text
        return text


@dataclass
class SkipOpcode(Opcode):
    """``DEFB`` line covering bytes skipped after a call."""

    data: bytes = b""

    @classmethod
    def from_memory(cls, memory: Memory, address: int, count: int) -> "SkipOpcode":
        data = memory.get_data(address, count)
        return cls(
            code=data[0] if data else 0,
            template="DEFB {}",
            length=count,
            address=address & ADDRESS_MASK,
            data=data,
        )

    def disassemble(
        self,
        get_label: LabelResolver,
        settings: DisassemblerSettings = DEFAULT_SETTINGS,
    ) -> str:
        template = self.template.lower() if settings.lower_case else self.template
        text = template.format(",".join(settings.format_hex(value, 2) for value in self.data))
        self.disassembled_text = text
        return text


# ---------------------------------------------------------------------------
# Decode table entries
# ---------------------------------------------------------------------------


def _signed_byte(value: int) -> int:
    return value - 0x100 if value & 0x80 else value


@dataclass(frozen=True)
class OpcodeEntry:
    """Terminal table entry.

    ``length`` is the full instruction length including prefixes.
    ``index_before_opcode`` marks the DD CB / FD CB layout where the
    displacement precedes the final opcode byte.  ``immediate`` marks
    ``LD (IX+d),n``.
    """

    code: int
    template: str
    length: int
    flags: OpcodeFlag = OpcodeFlag.NONE
    value_type: NumberType = NumberType.NONE
    index_before_opcode: bool = False
    immediate: bool = False

    def decode(self, memory: Memory, position: int, start: int) -> Opcode:
        """Build a fresh record; ``position`` is the address of the byte that
        selected this entry and ``start`` the address of the first byte."""

        second_value = None
        if self.immediate:
            second_value = memory.get_value_at(position + 2)
        return Opcode(
            code=self.code,
            template=self.template,
            length=self.length,
            flags=self.flags,
            value_type=self.value_type,
            value=self._decode_value(memory, position, start),
            second_value=second_value,
            address=start & ADDRESS_MASK,
        )

    def _decode_value(self, memory: Memory, position: int, start: int) -> int:
        value_type = self.value_type
        if value_type == NumberType.NONE:
            return 0
        if value_type == NumberType.CODE_RST:
            return self.code & 0b00111000
        if value_type == NumberType.CODE_LOCAL_LBL:
            offset = _signed_byte(memory.get_value_at(position + 1))
            return (start + self.length + offset) & ADDRESS_MASK
        if value_type == NumberType.RELATIVE_INDEX:
            if self.index_before_opcode:
                return _signed_byte(memory.get_value_at(position - 1))
            return _signed_byte(memory.get_value_at(position + 1))
        if value_type in (NumberType.NUMBER_BYTE, NumberType.PORT_LBL):
            return memory.get_value_at(position + 1)
        if value_type == NumberType.NUMBER_WORD_BIG_ENDIAN:
            return memory.get_big_endian_word_value_at(position + 1)
        if value_type in (NumberType.NUMBER_WORD, NumberType.DATA_LBL, NumberType.CODE_LBL, NumberType.CODE_SUB):
            return memory.get_word_value_at(position + 1)
        raise AssertionError(f"no decode rule for {value_type!r} (opcode 0x{self.code:02X})")


@dataclass(frozen=True)
class PrefixEntry:
    """Entry deferring to another table.

    ``advance`` is the distance from this byte to the byte keying the next
    table; it is 2 for DD CB / FD CB where a displacement sits in between.
    """

    code: int
    table: Tuple["TableEntry", ...]
    advance: int = 1


TableEntry = Union[OpcodeEntry, PrefixEntry]
