from pathlib import Path

from z80flow.memory import MAX_MEM_SIZE, MemAttribute, Memory


def test_set_memory_marks_assigned_and_wraps() -> None:
    memory = Memory()
    memory.set_memory(0xFFFF, b"\x01\x02")

    assert memory.get_value_at(0xFFFF) == 0x01
    assert memory.get_value_at(0x0000) == 0x02
    assert memory.get_attribute_at(0xFFFF) & MemAttribute.ASSIGNED
    assert memory.get_attribute_at(0x0000) & MemAttribute.ASSIGNED
    assert not memory.get_attribute_at(0x0001) & MemAttribute.ASSIGNED


def test_word_access_wraps_and_honours_byte_order() -> None:
    memory = Memory()
    memory.set_memory(0xFFFF, b"\x34\x12")

    assert memory.get_word_value_at(0xFFFF) == 0x1234
    assert memory.get_big_endian_word_value_at(0xFFFF) == 0x3412
    assert memory.get_data(0xFFFF, 3) == b"\x34\x12\x00"


def test_read_bin_file(tmp_path: Path) -> None:
    image = tmp_path / "image.bin"
    image.write_bytes(b"\x3e\x05\xc9")

    memory = Memory()
    memory.read_bin_file(0x8000, image)

    assert memory.get_data(0x8000, 3) == b"\x3e\x05\xc9"
    assert memory.get_attribute_at(0x8002) == MemAttribute.ASSIGNED


def test_attribute_ranges_are_clipped() -> None:
    memory = Memory()
    memory.add_attributes_at(0xFFFE, 4, MemAttribute.DATA)

    assert memory.get_attribute_at(0xFFFE) & MemAttribute.DATA
    assert memory.get_attribute_at(0xFFFF) & MemAttribute.DATA
    assert not memory.get_attribute_at(0x0000) & MemAttribute.DATA
    assert memory.get_attribute_at(-1) == 0
    assert memory.get_attribute_at(MAX_MEM_SIZE) == 0


def test_search_and_reset_attributes() -> None:
    memory = Memory()
    memory.set_memory(0x4000, bytes(8))
    memory.add_attribute_at(0x4005, MemAttribute.FLOW_ANALYZED)

    assert memory.search_addr_with_attribute(MemAttribute.FLOW_ANALYZED, 0x4000, 8) == 0x4005
    assert memory.search_addr_with_attribute(MemAttribute.FLOW_ANALYZED, 0x4000, 5) is None
    assert memory.search_addr_with_attribute(MemAttribute.CODE, 0x4000, 0) is None

    memory.reset_attribute_flag(MemAttribute.FLOW_ANALYZED)

    assert memory.get_attribute_at(0x4005) == MemAttribute.ASSIGNED


def test_set_attributes_replaces_bits() -> None:
    memory = Memory()
    memory.set_memory(0x100, b"\x00\x00")
    memory.set_attributes_at(0x100, 2, MemAttribute.CODE)

    assert memory.get_attribute_at(0x100) == MemAttribute.CODE
    memory.clear_attributes()
    assert memory.get_attribute_at(0x101) == 0
