from typing import Dict, Iterable, Optional, Tuple

from z80flow.config import DisassemblerSettings, LabelPrefixes
from z80flow.disassembler import Disassembler
from z80flow.naming import sanitize_label


def _disassembler(chunks: Dict[int, bytes], settings: Optional[DisassemblerSettings] = None, **kwargs) -> Disassembler:
    disassembler = Disassembler(settings or DisassemblerSettings(), **kwargs)
    for origin, data in chunks.items():
        disassembler.set_memory(origin, data)
    return disassembler


def _texts(disassembler: Disassembler, address: int) -> Tuple[str, ...]:
    node = disassembler.get_node_for_address(address)
    assert node is not None
    return tuple(opcode.disassembled_text for opcode in node.instructions)


LOOP_PROGRAM = {
    0x8000: b"\xcd\x10\x80\xc9",
    0x8010: bytes([0x06, 0x05, 0x3E, 0x00, 0x10, 0xFC, 0x28, 0x01, 0x3C, 0xC9]),
}


def test_subroutine_and_local_labels() -> None:
    disassembler = _disassembler(LOOP_PROGRAM)
    graph = disassembler.get_flow_graph([0x8000])

    labels = {address: node.label for address, node in graph.nodes.items() if node.label}
    assert labels == {
        0x8010: "SUB_8010",
        0x8012: "SUB_8010.LOOP",
        0x8019: "SUB_8010.L1",
    }
    # Entry without callers or predecessors stays unlabeled.
    assert graph.nodes[0x8000].label is None


def test_local_labels_render_relative_to_block() -> None:
    disassembler = _disassembler(LOOP_PROGRAM)
    disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    assert _texts(disassembler, 0x8000) == ("CALL SUB_8010",)
    assert _texts(disassembler, 0x8012) == ("LD A,$00", "DJNZ .LOOP")
    assert _texts(disassembler, 0x8016) == ("JR Z,.L1",)


def test_local_labels_share_block_prefix() -> None:
    disassembler = _disassembler(LOOP_PROGRAM)
    graph = disassembler.get_flow_graph([0x8000])

    for node in graph.nodes.values():
        block = graph.block_node(node.start)
        if node.label and block is not node and block is not None and block.label:
            assert node.label.startswith(block.label + ".")


def test_rst_vector_label() -> None:
    chunks = {
        0x0020: b"\xc9",
        0x8000: b"\xe7\xc9",  # RST 0x20 / RET
    }
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    assert graph.nodes[0x0020].label == "RST_20"
    assert _texts(disassembler, 0x8000) == ("RST RST_20",)


def test_jump_target_gets_global_label() -> None:
    chunks = {
        0x8000: b"\xc3\x10\x80",  # JP 0x8010
        0x8010: b"\x00\x18\xfd",  # NOP / JR 0x8010
    }
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    assert graph.nodes[0x8010].label == "LBL_8010"
    assert _texts(disassembler, 0x8000) == ("JP LBL_8010",)
    assert _texts(disassembler, 0x8010) == ("NOP", "JR LBL_8010")


def test_data_reference_labels() -> None:
    chunks = {0x8000: b"\x3a\x00\x90\x32\x07\x80\x3e\x07\xc9"}
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000], {0x8000: "main"})
    disassembler.disassemble_nodes()

    assert graph.other_labels == {0x9000: "DATA_9000", 0x8006: "main.CODE_8006"}
    assert _texts(disassembler, 0x8000)[:2] == ("LD A,(DATA_9000)", "LD (.CODE_8006+1),A")
    assert disassembler.get_other_label(0x9000) == "DATA_9000"


def test_data_reference_into_unlabeled_block() -> None:
    chunks = {0x8000: b"\x32\x04\x80\x3e\x07\xc9"}
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000])

    assert graph.other_labels == {0x8003: "CODE_8003"}
    block = disassembler.get_block_node(0x8000)
    assert disassembler.get_label_for_address(block, 0x8004) == "CODE_8003+1"


def test_external_lookup_wins() -> None:
    chunks = {0x8000: b"\x21\x00\x40\xcd\x10\x80\xc9", 0x8010: b"\xc9"}
    names = {0x4000: "SCREEN", 0x8010: "print"}
    disassembler = _disassembler(chunks, label_lookup=names.get)
    disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    assert _texts(disassembler, 0x8000) == ("LD HL,SCREEN", "CALL print")
    assert disassembler.get_label_for_addr64k(0x8010) == "print"


def test_hex_fallback_and_custom_prefixes() -> None:
    settings = DisassemblerSettings(prefixes=LabelPrefixes(sub="sub_", lbl="lbl_"), hex_format="h")
    chunks = {0x8000: b"\x21\x34\x12\xcd\x10\x80\xc9", 0x8010: b"\xc9"}
    disassembler = _disassembler(chunks, settings)
    graph = disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    assert graph.nodes[0x8010].label == "sub_8010"
    assert _texts(disassembler, 0x8000) == ("LD HL,1234h", "CALL sub_8010")


def test_local_labels_fall_back_to_global_in_unlabeled_block() -> None:
    chunks = {0x8000: b"\x28\x01\x00\xc9"}  # JR Z,0x8003 / NOP / RET
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000])

    assert graph.nodes[0x8000].label is None
    assert graph.nodes[0x8003].label == "LBL_8003"


def test_sanitize_label() -> None:
    assert sanitize_label("main loop") == "main_loop"
    assert sanitize_label("1st") == "L_1st"
    assert sanitize_label("sub.local") == "sub.local"
    assert sanitize_label("  ") == "label"


def test_numbered_loops_and_locals_in_one_block() -> None:
    chunks = {
        0x8000: b"\xcd\x10\x80\xc9",
        # NOP / INC A / DJNZ 0x8011 / DEC A / JR NZ,0x8014
        # JR Z,0x801A / INC A / JR Z,0x801D / INC A / RET
        0x8010: bytes([0x00, 0x3C, 0x10, 0xFD, 0x3D, 0x20, 0xFD, 0x28, 0x01, 0x3C, 0x28, 0x01, 0x3C, 0xC9]),
    }
    disassembler = _disassembler(chunks)
    graph = disassembler.get_flow_graph([0x8000])
    disassembler.disassemble_nodes()

    labels = {address: node.label for address, node in graph.nodes.items() if node.label}
    assert labels == {
        0x8010: "SUB_8010",
        0x8011: "SUB_8010.LOOP1",
        0x8014: "SUB_8010.LOOP2",
        0x801A: "SUB_8010.L1",
        0x801D: "SUB_8010.L2",
    }
    assert _texts(disassembler, 0x8011) == ("INC A", "DJNZ .LOOP1")
    assert _texts(disassembler, 0x8014) == ("DEC A", "JR NZ,.LOOP2")
    assert _texts(disassembler, 0x8017) == ("JR Z,.L1",)
    assert _texts(disassembler, 0x801A) == ("JR Z,.L2",)
