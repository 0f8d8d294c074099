"""Instruction listing utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .cfg import AsmNode, FlowGraph, FlowGraphBuilder
from .config import DEFAULT_SETTINGS, DisassemblerSettings
from .diagnostics import Diagnostics
from .memory import Memory
from .naming import LabelAssigner, LabelLookup
from .opcode_tables import DecodeTables, build_tables
from .project import ProjectConfig
from .subroutines import Subroutine, SubroutinePartitioner


logger = logging.getLogger(__name__)

LabelPairs = Union[Mapping[int, str], Iterable[Tuple[int, str]]]


class Disassembler:
    """Own a memory image and run the analysis passes over it."""

    def __init__(
        self,
        settings: DisassemblerSettings = DEFAULT_SETTINGS,
        *,
        label_lookup: Optional[LabelLookup] = None,
    ) -> None:
        self.settings = settings
        self.memory = Memory()
        self.tables: DecodeTables = build_tables(settings.zx_next)
        self.skips: Dict[int, int] = {}
        self.label_lookup = label_lookup
        self.graph = FlowGraph()
        self.labels = LabelAssigner(self.graph, self.memory, settings=settings, label_lookup=label_lookup)

    @classmethod
    def from_project(cls, project: ProjectConfig, *, label_lookup: Optional[LabelLookup] = None) -> "Disassembler":
        disassembler = cls(project.settings, label_lookup=label_lookup)
        for image in project.images:
            disassembler.set_memory(image.origin, image.load())
        disassembler.skips.update(project.skips)
        return disassembler

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_memory(self, origin: int, data: bytes) -> None:
        self.memory.set_memory(origin, data)

    def read_bin_file(self, origin: int, path: Path) -> None:
        self.memory.read_bin_file(origin, path)

    def set_skip(self, address: int, count: int) -> None:
        if count <= 0:
            raise ValueError(f"skip count must be positive, got {count}")
        self.skips[address] = count

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def get_flow_graph(
        self,
        addresses: Iterable[int],
        labels: LabelPairs = (),
        *,
        label_lookup: Optional[LabelLookup] = None,
    ) -> FlowGraph:
        """Run every pass for ``addresses`` and return the new graph."""

        if isinstance(labels, Mapping):
            labels = sorted(labels.items())
        lookup = label_lookup or self.label_lookup
        builder = FlowGraphBuilder(self.memory, tables=self.tables, skips=self.skips, settings=self.settings)
        graph = builder.build(addresses, labels)
        SubroutinePartitioner(graph).run()
        assigner = LabelAssigner(graph, self.memory, settings=self.settings, label_lookup=lookup)
        assigner.run()
        self.graph = graph
        self.labels = assigner
        logger.debug("%s", graph.diagnostics.summary().describe())
        return graph

    def disassemble_nodes(self, nodes: Optional[Iterable[AsmNode]] = None) -> None:
        """Render the instruction text of ``nodes`` (default: all nodes)."""

        targets = self.graph.node_order() if nodes is None else list(nodes)
        for node in targets:
            resolve = self.labels.resolver_for(self.graph.block_node(node.start))
            for opcode in node.instructions:
                opcode.disassemble(resolve, self.settings)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def diagnostics(self) -> Diagnostics:
        return self.graph.diagnostics

    def get_node_for_address(self, address: int) -> Optional[AsmNode]:
        return self.graph.nodes.get(address)

    def get_nodes_for_addresses(self, addresses: Iterable[int]) -> List[AsmNode]:
        return self.graph.get_nodes_for_addresses(addresses)

    def get_block_node(self, address: int) -> Optional[AsmNode]:
        return self.graph.block_node(address)

    def get_label_for_addr64k(self, address: int) -> Optional[str]:
        return self.labels.get_label_for_addr64k(address)

    def get_other_label(self, address: int) -> Optional[str]:
        return self.labels.get_other_label(address)

    def get_label_for_address(self, block_node: Optional[AsmNode], address: int) -> str:
        return self.labels.get_label_for_address(block_node, address)

    def get_subroutines_for(self, starts: Iterable[int]) -> Tuple[int, Dict[int, Subroutine]]:
        return SubroutinePartitioner(self.graph).get_subroutines_for(starts)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def generate_listing(self) -> str:
        self.disassemble_nodes()
        graph = self.graph
        summary = graph.diagnostics.summary()
        lines: List[str] = [
            f"; z80 listing nodes={len(graph.nodes)} diagnostics={summary.total}",
        ]
        if summary.total:
            lines.append("; diagnostics: " + summary.describe())

        for node in graph.node_order():
            block = graph.block_node(node.start)
            if block is node:
                lines.append("")
            if node.label:
                label = node.label
                if block is not None and block is not node and block.label and label.startswith(block.label + "."):
                    label = label[len(block.label):]
                lines.append(f"{label}:")
            for entry in graph.diagnostics.for_range(node.start, node.length):
                lines.append(f"; {entry.message}")
            for opcode in node.instructions:
                lines.append(self._render_line(opcode.address, opcode.length, opcode.disassembled_text or ""))

        other = [
            (address, label)
            for address, label in sorted(graph.other_labels.items())
            if address not in graph.nodes
        ]
        if other:
            lines.append("")
            lines.append("; other labels")
            for address, label in other:
                lines.append(f"; {label} = {self.settings.format_hex(address, 4)}")
        return "\n".join(lines) + "\n"

    def write_listing(self, output_path: Path) -> None:
        Path(output_path).write_text(self.generate_listing(), "utf-8")

    def _render_line(self, address: Optional[int], length: int, text: str) -> str:
        if address is None:
            return f"{'':4}  {'':12}{text}"
        raw = " ".join(f"{value:02X}" for value in self.memory.get_data(address, min(length, 4)))
        if length > 4:
            raw += " .."
        return f"{address:04X}  {raw:<12}{text}"
