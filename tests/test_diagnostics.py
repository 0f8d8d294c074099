from z80flow.config import DisassemblerSettings
from z80flow.diagnostics import DiagnosticKind, Diagnostics


def test_ambiguous_target_is_reported_once() -> None:
    diagnostics = Diagnostics()

    diagnostics.add_ambiguous(0x8000, 0x8001)
    diagnostics.add_ambiguous(0x8010, 0x8001)

    assert diagnostics.pairs() == [(0x8000, "The disassembly is ambiguous at $8001.")]


def test_unassigned_branch_is_kept_per_site() -> None:
    diagnostics = Diagnostics()

    diagnostics.add_branch_to_unassigned(0x8000, 0x9000)
    diagnostics.add_branch_to_unassigned(0x8000, 0x9000)
    diagnostics.add_branch_to_unassigned(0x8003, 0x9000)

    assert [entry.address for entry in diagnostics] == [0x8000, 0x8003]
    assert [entry.address for entry in diagnostics.for_range(0x8003, 3)] == [0x8003]


def test_different_bank_message_and_summary() -> None:
    settings = DisassemblerSettings(hex_format="0x")
    diagnostics = Diagnostics(lambda value: settings.format_hex(value, 4))

    entry = diagnostics.add_different_bank(0x8000, 0xC000)

    assert entry.kind is DiagnosticKind.DIFFERENT_BANK
    assert entry.message == "The address 0xC000 is in a different bank."
    summary = diagnostics.summary()
    assert (summary.ambiguous, summary.unassigned_branch, summary.different_bank) == (0, 0, 1)
    assert summary.total == 1
    assert summary.describe() == "ambiguous=0 unassigned=0 bank=1"
