"""Flat 64K memory image with a parallel attribute map."""

from __future__ import annotations

from enum import IntFlag
from pathlib import Path
from typing import Optional


MAX_MEM_SIZE = 0x10000
ADDRESS_MASK = MAX_MEM_SIZE - 1


class MemAttribute(IntFlag):
    """Classification bits stored for every address."""

    UNUSED = 0
    # Byte was loaded from an image.
    ASSIGNED = 0x01
    CODE = 0x02
    # First byte of a decoded instruction.
    CODE_FIRST = 0x04
    DATA = 0x10
    RET_ANALYZED = 0x20
    # Visited by the node discovery pass.
    FLOW_ANALYZED = 0x40


class Memory:
    """Byte image of the whole Z80 address space.

    The bytes and the attributes live in two ``bytearray`` objects of equal
    size.  Range based attribute helpers clip at the end of the address space
    while the byte accessors wrap around, matching how the CPU fetches
    operands at ``0xFFFF``.
    """

    def __init__(self) -> None:
        self._memory = bytearray(MAX_MEM_SIZE)
        self._attributes = bytearray(MAX_MEM_SIZE)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def set_memory(self, origin: int, data: bytes) -> None:
        """Merge ``data`` at ``origin`` and mark the bytes as assigned."""

        for offset, value in enumerate(data):
            address = (origin + offset) & ADDRESS_MASK
            self._memory[address] = value
            self._attributes[address] |= MemAttribute.ASSIGNED

    def read_bin_file(self, origin: int, path: Path) -> None:
        self.set_memory(origin, Path(path).read_bytes())

    # ------------------------------------------------------------------
    # Byte access
    # ------------------------------------------------------------------
    def get_value_at(self, address: int) -> int:
        return self._memory[address & ADDRESS_MASK]

    def get_word_value_at(self, address: int) -> int:
        low = self.get_value_at(address)
        high = self.get_value_at(address + 1)
        return (high << 8) | low

    def get_big_endian_word_value_at(self, address: int) -> int:
        high = self.get_value_at(address)
        low = self.get_value_at(address + 1)
        return (high << 8) | low

    def get_data(self, address: int, length: int) -> bytes:
        return bytes(self.get_value_at(address + offset) for offset in range(length))

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------
    def clear_attributes(self) -> None:
        self._attributes = bytearray(MAX_MEM_SIZE)

    def reset_attribute_flag(self, flags: int) -> None:
        """Clear ``flags`` for every address, leaving other bits untouched."""

        keep = ~int(flags) & 0xFF
        attributes = self._attributes
        for address in range(MAX_MEM_SIZE):
            attributes[address] &= keep

    def get_attribute_at(self, address: int) -> int:
        if address < 0 or address >= MAX_MEM_SIZE:
            return MemAttribute.UNUSED
        return self._attributes[address]

    def add_attribute_at(self, address: int, attr: int) -> None:
        if 0 <= address < MAX_MEM_SIZE:
            self._attributes[address] |= attr

    def add_attributes_at(self, address: int, length: int, attr: int) -> None:
        for current in self._clipped_range(address, length):
            self._attributes[current] |= attr

    def set_attributes_at(self, address: int, length: int, attr: int) -> None:
        for current in self._clipped_range(address, length):
            self._attributes[current] = attr

    def search_addr_with_attribute(
        self, search_attr: int, address: int, length: int
    ) -> Optional[int]:
        """Return the first address in ``[address, address+length)`` having
        any bit of ``search_attr`` set."""

        for current in self._clipped_range(address, length):
            if self._attributes[current] & search_attr:
                return current
        return None

    @staticmethod
    def _clipped_range(address: int, length: int) -> range:
        start = max(0, address)
        end = min(MAX_MEM_SIZE, address + length)
        return range(start, end)
