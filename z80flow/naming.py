"""Label synthesis and label resolution for the flow graph.

Every node that starts a block and is reached from somewhere gets a global
label: ``SUB_xxxx`` for subroutines, ``RST_xx`` for subroutines sitting on one
of the eight restart vectors and ``LBL_xxxx`` for everything else.  Nodes
inside a block that are reached other than by falling through from the
previous node get a local label below the block label, ``SUB_8000.L1`` or
``SUB_8000.LOOP`` for the target of a backward branch.  Data accesses without a
known name become ``DATA_xxxx``, or ``SUB_8000.CODE_xxxx`` when they point into
code (self modifying code, inline tables).

When instructions are rendered, labels resolve in a fixed order: the
externally supplied lookup, node labels, the table of other labels and
finally a plain hex number.  Labels inside the block being rendered are
shortened to their local ``.L1`` form.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .cfg import AsmNode, FlowGraph
from .config import DEFAULT_SETTINGS, DisassemblerSettings, hex_string
from .memory import MemAttribute, Memory

__all__ = [
    "sanitize_label",
    "LabelAssigner",
    "LabelLookup",
]


logger = logging.getLogger(__name__)

LabelLookup = Callable[[int], Optional[str]]


def _no_labels(address: int) -> Optional[str]:
    return None


def sanitize_label(name: str, default: str = "label") -> str:
    """Return an assembler friendly label based on ``name``.

    Characters other than letters, digits, ``_`` and ``.`` become underscores,
    surrounding underscores are stripped and a leading digit gains an ``L_``
    prefix.  Case is preserved.
    """

    cleaned = "".join(ch if ch.isalnum() or ch in "_." else "_" for ch in name.strip())
    label = cleaned.strip("_")
    if not label:
        label = default
    if label[0].isdigit():
        label = "L_" + label
    return label


class LabelAssigner:
    """Assign and resolve labels for one analysed graph."""

    def __init__(
        self,
        graph: FlowGraph,
        memory: Memory,
        *,
        settings: DisassemblerSettings = DEFAULT_SETTINGS,
        label_lookup: Optional[LabelLookup] = None,
    ) -> None:
        self.graph = graph
        self.memory = memory
        self.settings = settings
        self.prefixes = settings.prefixes
        self.label_lookup = label_lookup or _no_labels

    def run(self) -> None:
        self.assign_node_labels()
        self.assign_opcode_reference_labels()

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------
    def assign_node_labels(self) -> None:
        graph = self.graph
        prefixes = self.prefixes
        for node in graph.node_order():
            if graph.block_start(node.start) != node.start:
                continue
            if not node.label and (node.callers or node.predecessors):
                if node.is_subroutine:
                    # Restart vectors are recognised by address alone.
                    if node.start & ~0b00111000:
                        node.label = prefixes.sub + hex_string(node.start, 4)
                    else:
                        node.label = prefixes.rst + hex_string(node.start, 2)
                else:
                    node.label = prefixes.lbl + hex_string(node.start, 4)
            self.assign_local_labels(node)

    def assign_local_labels(self, block_node: AsmNode) -> None:
        """Label the referenced nodes inside the block led by ``block_node``."""

        graph = self.graph
        local_nodes: List[AsmNode] = []
        loop_nodes: List[AsmNode] = []
        node: Optional[AsmNode] = block_node
        while node is not None and node.length > 0:
            if not node.label and graph.is_other_reference(node):
                if graph.is_loop_root(node):
                    loop_nodes.append(node)
                else:
                    local_nodes.append(node)
            address = node.end
            if graph.block_start(address) != block_node.start:
                break
            node = graph.nodes.get(address)

        prefixes = self.prefixes
        if not block_node.label:
            for node in local_nodes + loop_nodes:
                node.label = prefixes.lbl + hex_string(node.start, 4)
            return
        prefix = block_node.label + "."
        for number, node in enumerate(local_nodes, 1):
            node.label = f"{prefix}{prefixes.local}{number}"
        if len(loop_nodes) == 1:
            loop_nodes[0].label = prefix + prefixes.loop
        else:
            for number, node in enumerate(loop_nodes, 1):
                node.label = f"{prefix}{prefixes.loop}{number}"

    def assign_opcode_reference_labels(self) -> None:
        """Name data references that have no label yet."""

        graph = self.graph
        prefixes = self.prefixes
        for node in graph.node_order():
            for address in node.data_references:
                if self.lookup_label(address):
                    continue
                if self.memory.get_attribute_at(address) & MemAttribute.CODE:
                    block = graph.block_node(address)
                    name = prefixes.code + hex_string(address, 4)
                    if block is not None and block.label:
                        name = f"{block.label}.{name}"
                else:
                    name = prefixes.data + hex_string(address, 4)
                graph.other_labels[address] = name
                logger.debug("reference label %s at 0x%04X", name, address)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def get_label_for_addr64k(self, address: int) -> Optional[str]:
        label = self.label_lookup(address)
        if label:
            return label
        node = self.graph.nodes.get(address)
        if node is not None and node.label:
            return node.label
        return None

    def get_other_label(self, address: int) -> Optional[str]:
        return self.graph.other_labels.get(address)

    def lookup_label(self, address: int) -> Optional[str]:
        return self.get_label_for_addr64k(address) or self.get_other_label(address)

    def get_label_for_address(self, block_node: Optional[AsmNode], address: int) -> str:
        """Resolve ``address`` for rendering inside ``block_node``.

        Addresses in the middle of an instruction resolve to the instruction
        start plus ``+N``.
        """

        offset = 0
        attr = self.memory.get_attribute_at(address)
        if attr & MemAttribute.CODE:
            start = address
            while address > 0 and not attr & MemAttribute.CODE_FIRST:
                address -= 1
                attr = self.memory.get_attribute_at(address)
            offset = start - address

        label = self.lookup_label(address)
        if label and block_node is not None and block_node.label:
            if label.startswith(block_node.label + "."):
                label = label[len(block_node.label):]
        if not label:
            label = self.settings.format_hex(address, 4)
        if offset:
            label += f"+{offset}"
        return label

    def resolver_for(self, block_node: Optional[AsmNode]) -> Callable[[int], str]:
        return lambda address: self.get_label_for_address(block_node, address)
