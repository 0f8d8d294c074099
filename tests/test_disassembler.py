from pathlib import Path

import pytest

from z80flow import Disassembler, DisassemblerSettings
from z80flow.diagnostics import DiagnosticKind


def _scenario_a() -> Disassembler:
    disassembler = Disassembler()
    disassembler.set_memory(0x8000, b"\xcd\x10\x80\xc9")
    disassembler.set_memory(0x8010, b"\x3e\x05\xc9")
    return disassembler


def test_listing_contains_labels_and_instructions() -> None:
    disassembler = _scenario_a()
    disassembler.get_flow_graph([0x8000])

    listing = disassembler.generate_listing()

    assert "SUB_8010:" in listing
    assert "8000  CD 10 80    CALL SUB_8010" in listing
    assert "8010  3E 05       LD A,$05" in listing
    assert listing.endswith("\n")


def test_write_listing(tmp_path: Path) -> None:
    disassembler = _scenario_a()
    disassembler.get_flow_graph([0x8000])
    output = tmp_path / "out.asm.txt"

    disassembler.write_listing(output)

    assert "RET" in output.read_text("utf-8")


def test_listing_shows_diagnostics() -> None:
    disassembler = Disassembler()
    disassembler.set_memory(0x8000, b"\xc3\x00\x90")
    disassembler.get_flow_graph([0x8000])

    listing = disassembler.generate_listing()

    assert "; The disassembly branches into unassigned memory at $9000." in listing
    assert disassembler.diagnostics.filter(DiagnosticKind.UNASSIGNED_BRANCH)


def test_get_flow_graph_is_idempotent() -> None:
    disassembler = _scenario_a()
    first = disassembler.get_flow_graph([0x8000], {0x8010: "print"})
    second = disassembler.get_flow_graph([0x8000], {0x8010: "print"})

    assert first is not second
    assert first.describe() == second.describe()
    assert second.nodes[0x8010].label == "print"


def test_rerun_clears_previous_results() -> None:
    disassembler = Disassembler()
    disassembler.set_memory(0x8000, b"\xc3\x00\x90")
    disassembler.get_flow_graph([0x8000])
    disassembler.set_memory(0x9000, b"\xc9")

    graph = disassembler.get_flow_graph([0x8000])

    assert not graph.diagnostics.entries
    assert not graph.placeholders
    assert graph.nodes[0x9000].label == "SUB_9000"


def test_skips_are_applied() -> None:
    disassembler = Disassembler()
    disassembler.set_memory(0x8000, b"\xcd\x10\x80\x01\x02\xc9")
    disassembler.set_memory(0x8010, b"\xc9")
    disassembler.set_skip(0x8003, 2)
    disassembler.get_flow_graph([0x8000])

    listing = disassembler.generate_listing()

    assert "DEFB $01,$02" in listing
    assert disassembler.get_node_for_address(0x8005) is not None
    with pytest.raises(ValueError):
        disassembler.set_skip(0x8003, 0)


def test_lower_case_listing() -> None:
    disassembler = Disassembler(DisassemblerSettings(lower_case=True))
    disassembler.set_memory(0x8000, b"\x3e\x05\xc9")
    disassembler.get_flow_graph([0x8000])

    assert "ld a,$05" in disassembler.generate_listing()


def test_query_helpers() -> None:
    disassembler = _scenario_a()
    disassembler.get_flow_graph([0x8000])

    nodes = disassembler.get_nodes_for_addresses([0x8010, 0x8000, 0x1234])
    assert [node.start for node in nodes] == [0x8000, 0x8010]
    assert disassembler.get_block_node(0x8003).start == 0x8000
    assert disassembler.get_label_for_addr64k(0x8010) == "SUB_8010"
    assert disassembler.get_label_for_addr64k(0x8000) is None

    depth, subroutines = disassembler.get_subroutines_for([0x8000])
    assert depth == 1
    assert subroutines[0x8010].nodes == [0x8010]
