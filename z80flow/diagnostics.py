"""Soft warnings collected while building the flow graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Set, Tuple

from .config import DEFAULT_SETTINGS


logger = logging.getLogger(__name__)


class DiagnosticKind(Enum):
    AMBIGUOUS = "ambiguous"
    UNASSIGNED_BRANCH = "unassigned-branch"
    # Reserved for bank aware front-ends; never produced by the analysis.
    DIFFERENT_BANK = "different-bank"


@dataclass(frozen=True)
class DiagnosticEntry:
    """Single diagnostic item.

    ``address`` is where the problem was observed (the instruction doing the
    branch) and ``target`` the address the message talks about.
    """

    kind: DiagnosticKind
    address: int
    target: int
    message: str

    def describe(self) -> str:
        return f"0x{self.address:04X}: {self.message}"


@dataclass
class DiagnosticSummary:
    """Aggregate view of diagnostic kinds."""

    ambiguous: int = 0
    unassigned_branch: int = 0
    different_bank: int = 0

    def register(self, kind: DiagnosticKind) -> None:
        if kind is DiagnosticKind.AMBIGUOUS:
            self.ambiguous += 1
        elif kind is DiagnosticKind.UNASSIGNED_BRANCH:
            self.unassigned_branch += 1
        elif kind is DiagnosticKind.DIFFERENT_BANK:
            self.different_bank += 1

    @property
    def total(self) -> int:
        return self.ambiguous + self.unassigned_branch + self.different_bank

    def describe(self) -> str:
        return (
            f"ambiguous={self.ambiguous} unassigned={self.unassigned_branch}"
            f" bank={self.different_bank}"
        )


class Diagnostics:
    """Ordered collection of diagnostics keyed by address.

    Entries are kept in the order they were raised.  An ambiguous location is
    reported once however many paths run into it; other kinds are reported
    once per branching instruction and target.
    """

    def __init__(self, format_address: Optional[Callable[[int], str]] = None) -> None:
        self._format_address = format_address or (lambda value: DEFAULT_SETTINGS.format_hex(value, 4))
        self._entries: List[DiagnosticEntry] = []
        self._seen: Set[Tuple[DiagnosticKind, Optional[int], int]] = set()

    def clear(self) -> None:
        self._entries.clear()
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DiagnosticEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> Tuple[DiagnosticEntry, ...]:
        return tuple(self._entries)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    def add_ambiguous(self, address: int, target: int) -> DiagnosticEntry:
        message = f"The disassembly is ambiguous at {self._format_address(target)}."
        return self._add(DiagnosticKind.AMBIGUOUS, address, target, message)

    def add_branch_to_unassigned(self, address: int, target: int) -> DiagnosticEntry:
        message = f"The disassembly branches into unassigned memory at {self._format_address(target)}."
        return self._add(DiagnosticKind.UNASSIGNED_BRANCH, address, target, message)

    def add_different_bank(self, address: int, target: int) -> DiagnosticEntry:
        message = f"The address {self._format_address(target)} is in a different bank."
        return self._add(DiagnosticKind.DIFFERENT_BANK, address, target, message)

    def _add(self, kind: DiagnosticKind, address: int, target: int, message: str) -> DiagnosticEntry:
        entry = DiagnosticEntry(kind, address, target, message)
        key = (kind, None if kind is DiagnosticKind.AMBIGUOUS else address, target)
        if key not in self._seen:
            self._seen.add(key)
            self._entries.append(entry)
            logger.debug("%s", entry.describe())
        return entry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def pairs(self) -> List[Tuple[int, str]]:
        return [(entry.address, entry.message) for entry in self._entries]

    def for_range(self, address: int, length: int) -> List[DiagnosticEntry]:
        end = address + length
        return [entry for entry in self._entries if address <= entry.address < end]

    def filter(self, kind: DiagnosticKind) -> Tuple[DiagnosticEntry, ...]:
        return tuple(entry for entry in self._entries if entry.kind is kind)

    def summary(self) -> DiagnosticSummary:
        summary = DiagnosticSummary()
        for entry in self._entries:
            summary.register(entry.kind)
        return summary

    def describe(self) -> str:
        lines = ["Diagnostics:", "  summary=" + self.summary().describe()]
        for entry in self._entries:
            lines.append("  " + entry.describe())
        return "\n".join(lines)
